"""Store settings for the bill tools.

Environment variables provide defaults, an optional JSON settings file
overrides them, and CLI flags override both. When nothing names a store,
the operator is asked for the JSON file path.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from billtools.helpers.bill_common import prompt_with_default
from billtools.helpers.firestore_rest import DEFAULT_BASE_URL, FirestoreRestStore
from billtools.helpers.record_store import JsonFileStore, RecordStore
from billtools.helpers.sequence_ids import DEFAULT_PREFIX

LOG = logging.getLogger("store_config")

DEFAULT_JSON_PATH = "~/.bills/bills.json"
ORDER_FIELDS = ("date", "createdAt")

# settings-file key -> StoreConfig attribute
_SETTINGS_KEYS = {
    "backend": "backend",
    "json-path": "json_path",
    "collection": "collection",
    "firestore-base-url": "base_url",
    "firestore-project": "project",
    "firestore-database": "database",
    "firestore-token": "token",
    "firestore-api-key": "api_key",
    "firestore-verify": "verify_tls",
    "bill-id-prefix": "prefix",
    "audit-dir": "audit_dir",
}


class ConfigError(ValueError):
    pass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class StoreConfig:
    backend: str = "json"
    json_path: Optional[str] = None
    collection: str = "bills"
    base_url: str = DEFAULT_BASE_URL
    project: Optional[str] = None
    database: str = "(default)"
    token: Optional[str] = None
    api_key: Optional[str] = None
    verify_tls: bool = True
    prefix: str = DEFAULT_PREFIX
    audit_dir: str = ".audit"

    @classmethod
    def from_env(cls) -> "StoreConfig":
        return cls(
            backend=os.getenv("BILLS_BACKEND", "json").strip().lower(),
            json_path=os.getenv("BILLS_JSON_PATH") or None,
            collection=os.getenv("BILLS_COLLECTION", "bills"),
            base_url=os.getenv("FIRESTORE_BASE_URL", DEFAULT_BASE_URL),
            project=os.getenv("FIRESTORE_PROJECT") or None,
            database=os.getenv("FIRESTORE_DATABASE", "(default)"),
            token=os.getenv("FIRESTORE_TOKEN") or None,
            api_key=os.getenv("FIRESTORE_API_KEY") or None,
            verify_tls=_env_bool("FIRESTORE_VERIFY", True),
            prefix=os.getenv("BILL_ID_PREFIX", DEFAULT_PREFIX),
            audit_dir=os.getenv("BILLS_AUDIT_DIR", ".audit"),
        )

    def apply_settings(self, settings: Dict[str, Any]) -> None:
        for key, attr in _SETTINGS_KEYS.items():
            if key in settings and settings[key] is not None:
                value = settings[key]
                if attr == "verify_tls" and isinstance(value, str):
                    value = value.strip().lower() in {"1", "true", "yes", "on"}
                setattr(self, attr, value)


def load_settings_file(path: str) -> Dict[str, Any]:
    path = os.path.abspath(os.path.expanduser(path))
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"failed to load settings file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"settings file {path} must hold a JSON object")
    return data


def add_store_arguments(parser: argparse.ArgumentParser) -> None:
    g = parser.add_argument_group("store")
    g.add_argument("--config", help="JSON settings file (keys: backend, json-path, collection, firestore-*, bill-id-prefix, audit-dir).")
    g.add_argument("--backend", choices=("json", "firestore"), help="Store backend (env BILLS_BACKEND, default json).")
    g.add_argument("--json-path", help="Bills JSON file for the json backend (env BILLS_JSON_PATH).")
    g.add_argument("--collection", help="Collection name (env BILLS_COLLECTION, default bills).")
    g.add_argument("--project", help="Firestore project id (env FIRESTORE_PROJECT).")
    g.add_argument("--base-url", help=f"Firestore REST base url (env FIRESTORE_BASE_URL, default {DEFAULT_BASE_URL}).")
    g.add_argument("--prefix", help=f"Bill id prefix (env BILL_ID_PREFIX, default {DEFAULT_PREFIX}).")
    g.add_argument("-v", "--verbose", action="store_true", help="Enable TRACE logging.")


def add_order_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--order-by",
        choices=ORDER_FIELDS,
        default="date",
        help="Field that orders bills for numbering: bill date (default) or creation time.",
    )


def config_from_args(args: argparse.Namespace, interactive: bool = True) -> StoreConfig:
    cfg = StoreConfig.from_env()
    if getattr(args, "config", None):
        cfg.apply_settings(load_settings_file(args.config))
    overrides = {
        "backend": getattr(args, "backend", None),
        "json_path": getattr(args, "json_path", None),
        "collection": getattr(args, "collection", None),
        "project": getattr(args, "project", None),
        "base_url": getattr(args, "base_url", None),
        "prefix": getattr(args, "prefix", None),
    }
    for attr, value in overrides.items():
        if value:
            setattr(cfg, attr, value)

    if cfg.backend == "json" and not cfg.json_path:
        if interactive:
            cfg.json_path = prompt_with_default("Bills JSON file", DEFAULT_JSON_PATH)
        else:
            cfg.json_path = DEFAULT_JSON_PATH
    return cfg


def open_store(cfg: StoreConfig) -> RecordStore:
    if cfg.backend == "json":
        store: RecordStore = JsonFileStore(cfg.json_path or DEFAULT_JSON_PATH, cfg.collection)
    elif cfg.backend == "firestore":
        if not cfg.project:
            raise ConfigError("Firestore backend needs a project id (--project or FIRESTORE_PROJECT).")
        store = FirestoreRestStore(
            cfg.project,
            cfg.collection,
            base_url=cfg.base_url,
            database=cfg.database,
            token=cfg.token,
            api_key=cfg.api_key,
            verify_tls=cfg.verify_tls,
        )
    else:
        raise ConfigError(f"Unknown backend: {cfg.backend!r} (expected json or firestore)")
    LOG.info("[info] Using store %s", store.describe())
    return store
