"""Shared fixtures: a fake searchd speaking the raw SQL-over-HTTP protocol."""

import json
import os
from collections import Counter
from pathlib import Path

import pytest

from manticore_backup.client import ManticoreClient
from manticore_backup.config import load_config

DEFAULT_VERSION = "6.2.12 dc5144d35@230822 (columnar 2.2.4 5aec342@230822) (secondary 2.2.4 5aec342@230822)"


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.status_code = status_code
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")

    def json(self):
        return json.loads(self.content)


class FakeDaemon:
    """Stands in for ``requests.Session`` and answers control commands."""

    def __init__(self, config_path, tables=None, version=DEFAULT_VERSION):
        self.config_path = str(config_path)
        self.tables = tables if tables is not None else {}
        self.version = version
        self.frozen = Counter()
        self.fail_unfreeze = set()
        self.queries = []
        self.timeouts = []
        self.closed = False

    def post(self, url, data=None, timeout=None):
        query = data["query"]
        self.queries.append(query)
        self.timeouts.append(timeout)
        return FakeResponse(self.handle(query))

    def close(self):
        self.closed = True

    def handle(self, query):
        upper = query.upper()
        if upper == "SHOW TABLES":
            rows = [{"Index": name, "Type": spec.get("type", "rt")} for name, spec in self.tables.items()]
            return self._result(rows)
        if upper.startswith("SHOW STATUS LIKE"):
            return self._result([{"Counter": "version", "Value": self.version}])
        if upper == "SHOW SETTINGS":
            return self._result([{"Setting_name": "configuration_file", "Value": self.config_path}])
        if upper == "FLUSH ATTRIBUTES":
            return self._result([{"tag": 1}])
        if upper.startswith("SHOW TABLE "):
            name = query.split()[2]
            if name not in self.tables:
                return self._result([], error=f"no such table '{name}'")
            settings = self.tables[name].get("settings", "")
            return self._result([{"Variable_name": "settings", "Value": settings}])
        if upper.startswith("FREEZE"):
            return self._freeze(self._names(query))
        if upper.startswith("UNFREEZE"):
            return self._unfreeze(self._names(query))
        return self._result([], error=f"unsupported query '{query}'")

    def unfreeze_count(self, name=None):
        return sum(1 for q in self.queries if q.startswith("UNFREEZE") and (name is None or q == f"UNFREEZE {name}"))

    def _freeze(self, names):
        missing = [name for name in names if name not in self.tables]
        if not names or missing:
            return self._result([], error=f"unknown tables: {', '.join(missing)}")
        self.frozen.update(names)
        rows = []
        for name in names:
            for file_path in self.tables[name].get("files", []):
                rows.append({"file": file_path, "normalized": file_path})
        return self._result(rows)

    def _unfreeze(self, names):
        if any(name in self.fail_unfreeze for name in names):
            return self._result([], error="unfreeze failed")
        for name in names:
            if self.frozen[name] > 0:
                self.frozen[name] -= 1
        return self._result([{"total": len(names)}])

    @staticmethod
    def _names(query):
        _, _, rest = query.partition(" ")
        return [name.strip() for name in rest.split(",") if name.strip()]

    @staticmethod
    def _result(rows, error=""):
        return [{"total": len(rows), "error": error, "warning": "", "data": rows}]


def make_table(data_dir: Path, name: str, file_count: int = 2, settings: str = ""):
    table_dir = data_dir / name
    table_dir.mkdir(parents=True)
    files = []
    for i in range(file_count):
        path = table_dir / f"{name}.{i}.spd"
        path.write_bytes(b"x" * (i + 1) * 10)
        files.append(str(path))
    return {"type": "rt", "files": files, "settings": settings}


@pytest.fixture
def data_dir(tmp_path):
    path = Path(os.path.realpath(tmp_path)) / "data"
    path.mkdir()
    (path / "manticore.json").write_text('{"clusters": {}}', encoding="utf-8")
    return path


@pytest.fixture
def searchd_conf(tmp_path, data_dir):
    root = Path(os.path.realpath(tmp_path))
    state_file = root / "state.sql"
    state_file.write_text("SET GLOBAL log_level = 1;\n", encoding="utf-8")
    path = root / "manticore.conf"
    path.write_text(
        "searchd {\n"
        "    listen = 127.0.0.1:9312\n"
        "    listen = 127.0.0.1:9306:mysql\n"
        "    listen = 127.0.0.1:9308:http\n"
        f"    data_dir = {data_dir}\n"
        f"    sphinxql_state = {state_file}\n"
        "}\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def config(searchd_conf):
    return load_config(searchd_conf)


@pytest.fixture
def daemon(searchd_conf, data_dir):
    return FakeDaemon(
        searchd_conf,
        tables={
            "products": make_table(data_dir, "products"),
            "users": make_table(data_dir, "users"),
        },
    )


@pytest.fixture
def client(config, daemon):
    return ManticoreClient(config, session=daemon)


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / "backups"
    path.mkdir()
    return path
