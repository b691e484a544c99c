# Config.py
#
# Central settings for the garden relay and its clients.
# Every value can be overridden from the environment or a local .env file.

import logging
import os

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# ----------------------------
# SERVER
# ----------------------------
APP_TITLE = os.getenv("APP_TITLE", "Vertical Garden Host")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))

# ----------------------------
# STORAGE
# ----------------------------
DB_PATH = os.getenv("DB_PATH", os.path.join(BASE_DIR, "data", "garden.db"))
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_TIMEOUT_S = float(os.getenv("DB_TIMEOUT_S", "5.0"))

HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "1000"))
HISTORY_MAX_LIMIT = 5000

# ----------------------------
# CLIENT
# ----------------------------
RELAY_URL = os.getenv("RELAY_URL", f"ws://localhost:{PORT}/ws")
RECONNECT_DELAY_S = float(os.getenv("RECONNECT_DELAY_S", "3.0"))
LIVE_WINDOW_S = float(os.getenv("LIVE_WINDOW_S", "5.0"))
THRESHOLDS_PATH = os.getenv("THRESHOLDS_PATH", os.path.join(BASE_DIR, "data", "thresholds.json"))

# ----------------------------
# LOGGING
# ----------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()],
    )
