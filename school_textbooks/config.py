from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Mapping, Optional

import streamlit as st

logger = logging.getLogger(__name__)

SETTINGS_FILE = "settings.json"
DB_FILE = "textbooks.db"
SESSION_DATA_DIR = "school_textbooks_data_dir"
ENV_DATA_DIR = "SCHOOL_TEXTBOOKS_DATA_DIR"
ENV_ACADEMIC_YEAR = "SCHOOL_TEXTBOOKS_ACADEMIC_YEAR"

# School year starts in September.
ACADEMIC_YEAR_START_MONTH = 9

DEFAULT_DATA_DIR = Path.home() / ".school_textbooks"


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    db_path: Path
    default_academic_year: str


def academic_year_for(day: date) -> str:
    start = day.year if day.month >= ACADEMIC_YEAR_START_MONTH else day.year - 1
    return f"{start}-{start + 1}"


def read_settings_file(data_dir: Path) -> dict:
    """Contents of `<data_dir>/settings.json`, or {} when absent or unreadable."""
    path = data_dir / SETTINGS_FILE
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable settings file {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def resolve_data_dir(
    session_value: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    default_dir: Path = DEFAULT_DATA_DIR,
) -> Path:
    """
    Where the database lives. First match wins:
    the Data Management page's choice for this session, the
    SCHOOL_TEXTBOOKS_DATA_DIR environment variable, the directory saved in the
    default folder's settings.json, and finally the default folder itself.
    """
    env = os.environ if environ is None else environ
    if session_value:
        chosen = session_value
    elif env.get(ENV_DATA_DIR):
        chosen = env[ENV_DATA_DIR]
    else:
        chosen = read_settings_file(default_dir).get("data_dir") or default_dir
    return Path(chosen).expanduser().resolve()


def build_settings(data_dir: Path, environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    data_dir.mkdir(parents=True, exist_ok=True)
    year = env.get(ENV_ACADEMIC_YEAR) or academic_year_for(date.today())
    return Settings(data_dir=data_dir, db_path=data_dir / DB_FILE, default_academic_year=year)


def persist_data_dir(data_dir_str: str, default_dir: Path = DEFAULT_DATA_DIR) -> Path:
    """
    Remember a new data directory. The pointer is written to the default folder
    so the next start finds it; the current session switches immediately.
    """
    data_dir = Path(data_dir_str).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)
    default_dir.mkdir(parents=True, exist_ok=True)
    (default_dir / SETTINGS_FILE).write_text(json.dumps({"data_dir": str(data_dir)}, indent=2), encoding="utf-8")
    st.session_state[SESSION_DATA_DIR] = str(data_dir)
    logger.info(f"Data directory set to {data_dir}")
    return data_dir


@st.cache_resource
def get_settings() -> Settings:
    return build_settings(resolve_data_dir(st.session_state.get(SESSION_DATA_DIR)))
