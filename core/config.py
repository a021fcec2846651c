import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

DEFAULT_CONFIG_FILE = os.path.join(BASE_DIR, "sheets_config.yaml")

load_dotenv(override=False)

# -------------------------------------------------
# SETTINGS
# -------------------------------------------------


@dataclass(frozen=True)
class StoreSettings:
    spreadsheet_id: Optional[str] = None
    service_account_file: Optional[str] = None
    service_account_info: Optional[Dict[str, Any]] = None
    data_backend: str = "sheets"
    max_attempts: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 8.0
    backoff_jitter: float = 0.1
    cache_ttl: float = 0.0
    log_level: str = "INFO"
    backup_dir: str = os.path.join(BASE_DIR, "backups")


# -------------------------------------------------
# HELPERS
# -------------------------------------------------

def safe_load(path):
    if not path or not os.path.isfile(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def _service_account_info(raw) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    if isinstance(raw, dict):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        raise ValueError("GOOGLE_SERVICE_ACCOUNT is not valid JSON") from None


def _pick(env: Dict[str, str], file_cfg: Dict[str, Any], env_key: str, file_key: str, default, cast=str):
    if env.get(env_key) not in (None, ""):
        raw = env[env_key]
    elif file_cfg.get(file_key) is not None:
        raw = file_cfg[file_key]
    else:
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for {env_key}: {raw!r}") from None


def load_settings(env: Optional[Dict[str, str]] = None, config_file: Optional[str] = None) -> StoreSettings:
    """
    Environment overrides the YAML file, the YAML file overrides defaults.

    YAML layout (all keys optional):

        sheets:
          spreadsheet_id: ...
          service_account_file: service_account.json
          max_attempts: 3
          backoff_base: 0.5
          backoff_max: 8
          backoff_jitter: 0.1
          cache_ttl: 0
          log_level: INFO
          backup_dir: backups
    """
    env = dict(os.environ) if env is None else env
    path = config_file or env.get("SHEETS_CONFIG_FILE") or DEFAULT_CONFIG_FILE
    loaded = safe_load(path) or {}
    cfg = loaded.get("sheets", {}) or {}

    defaults = StoreSettings()
    account_file = _pick(env, cfg, "GOOGLE_SERVICE_ACCOUNT_FILE", "service_account_file", None)
    if account_file is None and os.path.exists(os.path.join(BASE_DIR, "service_account.json")):
        account_file = os.path.join(BASE_DIR, "service_account.json")

    backup_dir = _pick(env, cfg, "SHEETS_BACKUP_DIR", "backup_dir", defaults.backup_dir)
    if not os.path.isabs(backup_dir):
        backup_dir = os.path.join(BASE_DIR, backup_dir)

    return StoreSettings(
        spreadsheet_id=_pick(env, cfg, "SPREADSHEET_ID", "spreadsheet_id", None),
        service_account_file=account_file,
        service_account_info=_service_account_info(
            _pick(env, cfg, "GOOGLE_SERVICE_ACCOUNT", "service_account", None, cast=lambda v: v)
        ),
        data_backend=_pick(env, cfg, "DATA_BACKEND", "data_backend", defaults.data_backend),
        max_attempts=_pick(env, cfg, "SHEETS_MAX_ATTEMPTS", "max_attempts", defaults.max_attempts, int),
        backoff_base=_pick(env, cfg, "SHEETS_BACKOFF_BASE", "backoff_base", defaults.backoff_base, float),
        backoff_max=_pick(env, cfg, "SHEETS_BACKOFF_MAX", "backoff_max", defaults.backoff_max, float),
        backoff_jitter=_pick(env, cfg, "SHEETS_BACKOFF_JITTER", "backoff_jitter", defaults.backoff_jitter, float),
        cache_ttl=_pick(env, cfg, "SHEETS_CACHE_TTL", "cache_ttl", defaults.cache_ttl, float),
        log_level=_pick(env, cfg, "LOG_LEVEL", "log_level", defaults.log_level).upper(),
        backup_dir=backup_dir,
    )


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
