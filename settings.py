import os
import sys
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from utils import normalize_path, unique_existing

CONFIG_FILE = "config.json"
DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_SEARCH_DEPTH = 5

logger = logging.getLogger("settings")


def default_trash_dir(home_dir: str) -> str:
    """Platform trash location for the current user."""
    if sys.platform == "darwin":
        return os.path.join(home_dir, ".Trash")
    data_home = os.getenv("XDG_DATA_HOME") or os.path.join(home_dir, ".local", "share")
    return os.path.join(data_home, "Trash")


@dataclass
class Settings:
    db_path: str = "foldermark.db"
    home_dir: str = field(default_factory=lambda: os.path.expanduser("~"))
    trash_dir: Optional[str] = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    search_depth: int = DEFAULT_SEARCH_DEPTH
    search_workers: int = 2
    indexed_search: str = "auto"
    host: str = "127.0.0.1"
    port: int = 8765
    log_dir: str = "logs"

    def __post_init__(self):
        self.home_dir = normalize_path(self.home_dir)
        if not self.trash_dir:
            self.trash_dir = default_trash_dir(self.home_dir)
        self.trash_dir = normalize_path(self.trash_dir)

    @property
    def desktop_dir(self) -> str:
        return os.path.join(self.home_dir, "Desktop")

    def search_roots(self) -> List[str]:
        """Desktop, Documents, Downloads, then home. Missing roots are skipped."""
        return unique_existing([
            self.desktop_dir,
            os.path.join(self.home_dir, "Documents"),
            os.path.join(self.home_dir, "Downloads"),
            self.home_dir,
        ])


# Environment variable -> (settings key, converter)
ENV_KEYS = {
    "FOLDERMARK_DB": ("db_path", str),
    "FOLDERMARK_HOME": ("home_dir", str),
    "FOLDERMARK_TRASH_DIR": ("trash_dir", str),
    "FOLDERMARK_POLL_INTERVAL": ("poll_interval", float),
    "FOLDERMARK_SEARCH_DEPTH": ("search_depth", int),
    "FOLDERMARK_SEARCH_WORKERS": ("search_workers", int),
    "FOLDERMARK_INDEXED_SEARCH": ("indexed_search", str),
    "FOLDERMARK_HOST": ("host", str),
    "FOLDERMARK_PORT": ("port", int),
    "FOLDERMARK_LOG_DIR": ("log_dir", str),
}


def _read_config_file(config_path: str) -> Dict[str, Any]:
    if not os.path.exists(config_path):
        logger.info("No config file found, using defaults")
        return {}
    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            logger.error(f"Ignoring config file {config_path}: expected a JSON object")
            return {}
        logger.info("Configuration loaded")
        return data
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load config: {e}")
        return {}


def load_settings(config_path: Optional[str] = None, env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from .env / environment, then config.json on top.
    Config file keys update the defaults, unknown keys are ignored.
    """
    load_dotenv(env_file)

    values: Dict[str, Any] = {}
    for env_name, (key, convert) in ENV_KEYS.items():
        raw = os.getenv(env_name)
        if raw is None or raw == "":
            continue
        try:
            values[key] = convert(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {env_name}: {raw!r}")

    config_path = config_path or os.getenv("FOLDERMARK_CONFIG") or CONFIG_FILE
    known = set(Settings.__dataclass_fields__)
    for key, value in _read_config_file(config_path).items():
        if key in known:
            values[key] = value
        else:
            logger.debug(f"Unknown config key ignored: {key}")

    return Settings(**values)
