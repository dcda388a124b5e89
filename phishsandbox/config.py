# config.py
"""
Runtime configuration, read once from the environment.

Every value can be overridden in deployment; malformed values fall back to
the defaults below.
"""

import os


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _bool(name: str, default: str = "1") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


LOG_LEVEL = os.getenv("PHISHSCAN_LOG_LEVEL", "INFO").upper()

# Model artifacts (produced by the external trainer)
MODEL_ROOT = os.getenv("PHISHSCAN_MODEL_DIR", os.path.join("ml", "model"))
URL_MODEL_DIR = os.getenv("PHISHSCAN_URL_MODEL_DIR", os.path.join(MODEL_ROOT, "url"))
HTML_MODEL_DIR = os.getenv("PHISHSCAN_HTML_MODEL_DIR", os.path.join(MODEL_ROOT, "html"))
ARCHITECTURE_FILE = "model.json"
WEIGHTS_FILE = "weights.json"

# Browser fetching
FETCH_TIMEOUT_MS = _int("PHISHSCAN_FETCH_TIMEOUT_MS", 30000)
POST_CLICK_WAIT_MS = _int("PHISHSCAN_POST_CLICK_WAIT_MS", 10000)
BROWSER_HEADLESS = _bool("PHISHSCAN_HEADLESS", "1")
MAX_BROWSERS = max(1, _int("PHISHSCAN_MAX_BROWSERS", 4))

# HTTP adapter
API_KEY = os.getenv("PHISHSCAN_API_KEY") or None
REDIS_URL = os.getenv("REDIS_URL") or None
PORT = _int("PORT", 5050)
