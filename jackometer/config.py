"""
Runtime configuration for Jackometer.
Values come from the environment (a local .env file is honoured).
"""
import os
import logging
import logging.handlers
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ─── OpenAI ────────────────────────────────────────────────────────────
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
# "pro" model for long-form writing, "fast" model for structured answers
MODEL = os.getenv("DEFAULT_OPENAI_MODEL", "gpt-4o")
FAST_MODEL = os.getenv("FAST_OPENAI_MODEL", "gpt-4o-mini")
SEARCH_MODEL = os.getenv("SEARCH_OPENAI_MODEL", "gpt-4o-search-preview")
REASONING_MODEL = os.getenv("REASONING_OPENAI_MODEL", "o4-mini")
IMAGE_MODEL = os.getenv("IMAGE_OPENAI_MODEL", "gpt-image-1")

# ─── Storage ───────────────────────────────────────────────────────────
DB = os.getenv("JACKOMETER_DB", "jackometer_data.json")
USERS_FILE = os.getenv("JACKOMETER_USERS", "users.json")
STORAGE_QUOTA_BYTES = int(os.getenv("STORAGE_QUOTA_BYTES", 5 * 1024 * 1024))
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", 100))

# ─── Uploads ───────────────────────────────────────────────────────────
MAX_CONTENT_LENGTH = 32 * 1024 * 1024

# ─── Image compression policy ──────────────────────────────────────────
COMPRESS_MAX_WIDTH = int(os.getenv("COMPRESS_MAX_WIDTH", 2500))
COMPRESS_MAX_ITERATIONS = int(os.getenv("COMPRESS_MAX_ITERATIONS", 15))
COMPRESS_PROBE_STEPS = int(os.getenv("COMPRESS_PROBE_STEPS", 6))
COMPRESS_SHRINK_RATIO = float(os.getenv("COMPRESS_SHRINK_RATIO", 0.85))
COMPRESS_MIN_DIMENSION = int(os.getenv("COMPRESS_MIN_DIMENSION", 50))
# Compressed files kept per user in memory
COMPRESS_KEEP_FILES = int(os.getenv("COMPRESS_KEEP_FILES", 20))

# ─── Logging ───────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE = os.getenv("LOG_FILE", "logs/jackometer.log")
LOG_MAX_SIZE_MB = 10
LOG_BACKUP_COUNT = 3


def setup_logger(name: str = None) -> logging.Logger:
    """
    Get or create a configured logger.

    Console output at INFO, rotating file output at DEBUG. Handlers are only
    attached to the root "jackometer" logger; module loggers propagate to it.

    Usage:
        from jackometer.config import setup_logger
        logger = setup_logger(__name__)
    """
    root = logging.getLogger("jackometer")

    if not root.handlers:
        root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

        console = logging.StreamHandler()
        console.setLevel(logging.INFO)
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(console)

        log_path = Path(LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            LOG_FILE,
            maxBytes=LOG_MAX_SIZE_MB * 1024 * 1024,
            backupCount=LOG_BACKUP_COUNT,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    if not name or name == "jackometer":
        return root
    return logging.getLogger(name)
