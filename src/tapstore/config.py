import os
from dataclasses import dataclass
from typing import Dict, Optional

from .logging import get_logger
from .paths import expand_abs, find_project_root, var_dir

log = get_logger("config")

DEFAULT_EMAIL_API_BASE_URL = "https://email-service-api-y7ye.onrender.com"
DEFAULT_EMAIL_API_TIMEOUT = 60
DATA_SUBDIR = "tapstore"


@dataclass(frozen=True)
class AppSettings:
    data_dir: str
    storage_quota: Optional[int]
    email_api_base_url: str
    email_api_timeout: int


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    the repository-level `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Minimal .env reader (no external dependencies).

    - Reads key=value pairs, ignores comments (#/;) and blank lines.
    - Trims single/double quotes around the value.
    - Returns mapping; does not mutate environment.
    """
    env: Dict[str, str] = {}
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return env
    try:
        with open(path, "r", encoding="utf-8") as f:
            for raw in f:
                line = raw.strip()
                if not line or line.startswith("#") or line.startswith(";"):
                    continue
                if "=" not in line:
                    continue
                k, v = line.split("=", 1)
                k = k.strip()
                v = v.strip()
                if (v.startswith('"') and v.endswith('"')) or (v.startswith("'") and v.endswith("'")):
                    v = v[1:-1]
                env[k] = v.strip()
        log.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    except OSError as e:
        log.warning(f"Failed reading .env: {e}")
    return env


def _lookup(key: str, env: Dict[str, str]) -> Optional[str]:
    v = os.environ.get(key)
    if v:
        return v.strip()
    v = env.get(key)
    return v.strip() if v else None


def _parse_positive_int(key: str, raw: Optional[str], default: Optional[int]) -> Optional[int]:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning(f"Ignoring non-numeric {key}={raw!r}")
        return default
    if value <= 0:
        log.warning(f"Ignoring non-positive {key}={raw!r}")
        return default
    return value


def load_data_dir(dotenv_dir: str) -> str:
    env = _read_dotenv(dotenv_dir)
    v = _lookup("TAPSTORE_DATA_DIR", env)
    if v:
        return expand_abs(v)
    return os.path.join(var_dir(find_project_root(dotenv_dir)), DATA_SUBDIR)


def load_email_api(dotenv_dir: str) -> tuple[str, int]:
    """Return (base_url, timeout_seconds) for the email delivery service."""
    env = _read_dotenv(dotenv_dir)
    base = _lookup("EMAIL_API_BASE_URL", env) or DEFAULT_EMAIL_API_BASE_URL
    timeout = _parse_positive_int("EMAIL_API_TIMEOUT", _lookup("EMAIL_API_TIMEOUT", env), DEFAULT_EMAIL_API_TIMEOUT)
    return base.rstrip("/"), int(timeout or DEFAULT_EMAIL_API_TIMEOUT)


def load_settings(dotenv_dir: Optional[str] = None) -> AppSettings:
    """Resolve all settings: environment first, then `.env`, then defaults."""
    base_dir = dotenv_dir or os.getcwd()
    env = _read_dotenv(base_dir)
    quota = _parse_positive_int("TAPSTORE_STORAGE_QUOTA", _lookup("TAPSTORE_STORAGE_QUOTA", env), None)
    base_url, timeout = load_email_api(base_dir)
    settings = AppSettings(
        data_dir=load_data_dir(base_dir),
        storage_quota=quota,
        email_api_base_url=base_url,
        email_api_timeout=timeout,
    )
    log.debug(f"Resolved settings: {settings}")
    return settings
