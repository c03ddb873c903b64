from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import streamlit as st

CONFIG_FILE_NAME = "settings.json"
ENV_DATA_DIR = "METAL_ERP_DATA_DIR"
ENV_LOG_LEVEL = "METAL_ERP_LOG_LEVEL"
SESSION_KEY = "metal_erp_data_dir"


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    db_path: Path
    base_currency: str = "USD"
    log_level: str = "INFO"


def _default_data_dir() -> Path:
    return Path.home() / ".metal_erp"


def _load_persisted_settings(data_dir: Path) -> dict:
    cfg = data_dir / CONFIG_FILE_NAME
    if cfg.exists():
        try:
            return json.loads(cfg.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
    return {}


def persist_data_dir(data_dir_str: str) -> None:
    data_dir = Path(data_dir_str).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)

    # The pointer is written to the default folder so the next start finds it.
    default_dir = _default_data_dir()
    default_dir.mkdir(parents=True, exist_ok=True)
    payload = _load_persisted_settings(default_dir)
    payload["data_dir"] = str(data_dir)
    (default_dir / CONFIG_FILE_NAME).write_text(json.dumps(payload, indent=2), encoding="utf-8")

    st.session_state[SESSION_KEY] = str(data_dir)


def resolve_settings(session_dir: str | None = None) -> Settings:
    # Priority order:
    # 1) Session state (set via Data Management page)
    # 2) Environment variable
    # 3) Persisted settings in default folder
    # 4) Default folder
    default_dir = _default_data_dir()
    persisted = _load_persisted_settings(default_dir)

    if session_dir:
        data_dir = Path(session_dir).expanduser().resolve()
    elif os.getenv(ENV_DATA_DIR):
        data_dir = Path(os.getenv(ENV_DATA_DIR, "")).expanduser().resolve()
    else:
        data_dir = Path(persisted.get("data_dir", default_dir)).expanduser().resolve()

    data_dir.mkdir(parents=True, exist_ok=True)
    return Settings(
        data_dir=data_dir,
        db_path=data_dir / "app.db",
        base_currency=str(persisted.get("base_currency", "USD")).upper(),
        log_level=os.getenv(ENV_LOG_LEVEL, str(persisted.get("log_level", "INFO"))).upper(),
    )


@st.cache_resource
def _cached_settings(session_dir: str | None) -> Settings:
    return resolve_settings(session_dir)


def get_settings() -> Settings:
    return _cached_settings(st.session_state.get(SESSION_KEY))
