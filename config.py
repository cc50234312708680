# config.py - Environment configuration for the order dashboard engine
"""
Central place for environment-driven settings.
Values are read once at import time from the process environment (and a
local .env file when present).
"""

import os
import logging
from typing import Dict

from dotenv import load_dotenv

# =====================================
# Environment & Config
# =====================================
load_dotenv()
logger = logging.getLogger(__name__)

# Backend
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8787")
API_TOKEN = os.getenv("API_TOKEN")
API_TIMEOUT_SECONDS = float(os.getenv("API_TIMEOUT_SECONDS", "30"))
API_MAX_ATTEMPTS = int(os.getenv("API_MAX_ATTEMPTS", "3"))
API_BACKOFF_SECONDS = float(os.getenv("API_BACKOFF_SECONDS", "1.0"))

# Polling
CONVERSATION_POLL_SECONDS = float(os.getenv("CONVERSATION_POLL_SECONDS", "15"))
MESSAGE_POLL_SECONDS = float(os.getenv("MESSAGE_POLL_SECONDS", "4"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")

# Display
CURRENCY = os.getenv("CURRENCY", "AED")

REQUIRED_VARS = ("API_BASE_URL", "API_TOKEN")


def validate_environment() -> Dict[str, bool]:
    """
    Check the settings a session cannot start without.

    Returns:
        Variable name -> usable. Problems are logged at critical level;
        nothing raises, so a caller can still start with defaults.
    """
    results = {var: bool((os.getenv(var) or "").strip()) for var in REQUIRED_VARS}

    base_url = (os.getenv("API_BASE_URL") or "").strip()
    if base_url and not base_url.startswith(("http://", "https://")):
        logger.critical(f"API_BASE_URL is not an http(s) URL: {base_url!r}")
        results["API_BASE_URL"] = False

    missing = [var for var, ok in results.items() if not ok]
    if missing:
        logger.critical(f"Missing or invalid environment variables: {', '.join(missing)}")
    else:
        logger.info("Backend settings present")
    return results
