from __future__ import annotations

import argparse
import builtins
import json

import pytest

from billtools.helpers.firestore_rest import FirestoreRestStore
from billtools.helpers.record_store import JsonFileStore
from billtools.helpers.store_config import (
    DEFAULT_JSON_PATH,
    ConfigError,
    StoreConfig,
    add_store_arguments,
    config_from_args,
    open_store,
)

ENV = (
    "BILLS_BACKEND", "BILLS_JSON_PATH", "BILLS_COLLECTION", "FIRESTORE_BASE_URL", "FIRESTORE_PROJECT",
    "FIRESTORE_DATABASE", "FIRESTORE_TOKEN", "FIRESTORE_API_KEY", "FIRESTORE_VERIFY", "BILL_ID_PREFIX",
    "BILLS_AUDIT_DIR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV:
        monkeypatch.delenv(name, raising=False)


def _args(argv):
    parser = argparse.ArgumentParser()
    add_store_arguments(parser)
    return parser.parse_args(argv)


def test_env_then_file_then_flags(tmp_path, monkeypatch):
    monkeypatch.setenv("BILLS_JSON_PATH", "/env/bills.json")
    monkeypatch.setenv("BILL_ID_PREFIX", "INV")
    monkeypatch.setenv("FIRESTORE_VERIFY", "false")
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"json-path": "/file/bills.json", "audit-dir": "/file/audit"}), encoding="utf-8")

    cfg = config_from_args(_args(["--config", str(settings), "--prefix", "Bill"]))

    assert cfg.json_path == "/file/bills.json"
    assert cfg.audit_dir == "/file/audit"
    assert cfg.prefix == "Bill"
    assert cfg.verify_tls is False


def test_missing_json_path_is_prompted(monkeypatch):
    monkeypatch.setattr(builtins, "input", lambda prompt: "")
    assert config_from_args(_args([])).json_path == DEFAULT_JSON_PATH
    monkeypatch.setattr(builtins, "input", lambda prompt: "/tmp/other.json")
    assert config_from_args(_args([])).json_path == "/tmp/other.json"


def test_bad_settings_file(tmp_path):
    bad = tmp_path / "settings.json"
    bad.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigError):
        config_from_args(_args(["--config", str(bad)]), interactive=False)


def test_open_store_backends():
    assert isinstance(open_store(StoreConfig(json_path="/tmp/bills.json")), JsonFileStore)
    store = open_store(StoreConfig(backend="firestore", project="shop", token="t"))
    assert isinstance(store, FirestoreRestStore)
    assert store.token == "t"
    with pytest.raises(ConfigError):
        open_store(StoreConfig(backend="firestore"))
    with pytest.raises(ConfigError):
        open_store(StoreConfig(backend="sqlite"))
