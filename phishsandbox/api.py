"""Thin Flask adapter over the analysis pipelines.

Run: python -m phishsandbox.api
"""

import logging
import threading

from flask import Flask, abort, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
import redis as redis_lib

from . import config, scanner
from .errors import FetchError, FetchTimeout, InferenceError, ModelLoadError

# Logging
logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger("api")

VERSION = "1.0"

# Flask app
app = Flask(__name__)

# Rate limiter: prefer Redis storage in production when REDIS_URL is set
if config.REDIS_URL:
    try:
        redis_lib.from_url(config.REDIS_URL).ping()
        limiter = Limiter(get_remote_address, app=app,
                          default_limits=["60 per minute"], storage_uri=config.REDIS_URL)
        logger.info("Using Redis at %s for rate limiting", config.REDIS_URL)
    except (redis_lib.RedisError, ValueError):
        logger.exception("Failed to connect to Redis, falling back to in-memory limiter")
        limiter = Limiter(get_remote_address, app=app, default_limits=["60 per minute"])
else:
    limiter = Limiter(get_remote_address, app=app, default_limits=["60 per minute"])

if config.API_KEY:
    logger.info("API key enabled")

# Every rendered analysis holds a browser process; cap how many run at once
_browser_slots = threading.BoundedSemaphore(config.MAX_BROWSERS)


def require_api_key() -> None:
    if not config.API_KEY:
        return
    key = request.headers.get("X-API-Key") or request.args.get("api_key")
    if not key or key != config.API_KEY:
        abort(401, description="Invalid or missing API key")


def _requested_url():
    data = request.get_json(silent=True) or {}
    url = data.get("url")
    if not isinstance(url, str) or not url.strip():
        return None
    return url.strip()


def _error(message: str, status: int):
    return jsonify({"error": message}), status


@app.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "version": VERSION})


@app.route("/analyze", methods=["POST"])
@limiter.limit("20 per minute")
def analyze():
    require_api_key()
    url = _requested_url()
    if url is None:
        return _error("URL is required", 400)

    logger.info("Analysis request: %s", url)
    timeout_s = config.FETCH_TIMEOUT_MS / 1000.0
    if not _browser_slots.acquire(timeout=timeout_s):
        logger.warning("No browser slot free for %s after %.1fs", url, timeout_s)
        return _error("Analyzer busy, try again later", 503)
    try:
        result = scanner.analyze_rendered(url, config.FETCH_TIMEOUT_MS)
    except FetchTimeout as e:
        logger.warning("Timed out analyzing %s: %s", url, e)
        return _error(str(e), 504)
    except FetchError as e:
        logger.warning("Fetch failed for %s: %s", url, e)
        return _error(str(e), 502)
    except ModelLoadError as e:
        logger.error("Model unavailable: %s", e)
        return _error(f"Model failed to load: {e}", 503)
    except InferenceError as e:
        logger.exception("Model prediction failed for %s", url)
        return _error(f"URL analysis failed: {e}", 500)
    finally:
        _browser_slots.release()
    return jsonify(result.to_dict()), 200


@app.route("/analyze/url", methods=["POST"])
@limiter.limit("60 per minute")
def analyze_url():
    require_api_key()
    url = _requested_url()
    if url is None:
        return _error("URL is required", 400)

    try:
        result = scanner.analyze_url(url)
    except ModelLoadError as e:
        logger.error("Model unavailable: %s", e)
        return _error(f"Model failed to load: {e}", 503)
    except InferenceError as e:
        logger.exception("Model prediction failed for %s", url)
        return _error(f"URL analysis failed: {e}", 500)
    return jsonify(result.to_dict()), 200


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=config.PORT, debug=False)
