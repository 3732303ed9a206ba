"""
FILE DESCRIPTION: Foundational module for global configuration and logging.
KEY FUNCTIONS/CLASSES: require_env, ConfigurationError, CompanyFormatter, setup_logger
"""

import logging
import os
import sys
import tempfile
from datetime import datetime
from pathlib import Path
from dotenv import load_dotenv

# === CONFIGURATION SECTION ===

# Load .env from the repository root
load_dotenv(Path(__file__).resolve().parents[2] / '.env')


class ConfigurationError(RuntimeError):
    """Raised when a required environment variable is missing."""
    pass


def require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(f"Missing environment variable: {name}")
    return value


# Per-invocation working directories are created below this root
WORK_ROOT = Path(os.getenv("RENDER_WORK_ROOT", Path(tempfile.gettempdir()) / "bms-renderer"))

# External tools (overridable for deployments with non-standard install paths)
WGET = os.getenv("WGET", "wget")
SEVEN_ZIP = os.getenv("SEVEN_ZIP", "7z")
SOX = os.getenv("SOX", "sox")
BEMUSE_TOOLS = os.getenv("BEMUSE_TOOLS", "bemuse-tools")
BMS_RENDERER = os.getenv("BMS_RENDERER", "bms-renderer")
WAVEGAIN = os.getenv("WAVEGAIN", "wavegain")
LAME = os.getenv("LAME", "lame")

# Stage timeouts (seconds)
DOWNLOAD_TIMEOUT = 120
EXTRACT_TIMEOUT = 60
CONVERT_TIMEOUT = 60
INDEX_TIMEOUT = 30
RENDER_TIMEOUT = 300
NORMALIZE_TIMEOUT = 15
TRIM_TIMEOUT = 30
ENCODE_TIMEOUT = 60

# File classification
CHART_EXTENSIONS = ("bms", "bme", "bml", "pms", "bmson")
AUDIO_EXTENSIONS = ("wav", "mp3", "ogg")
KEPT_EXTENSIONS = CHART_EXTENSIONS + ("ogg", "wav", "mp3")

# Downstream indexing reads charts carrying this marker as Shift-JIS
CHART_ENCODING_MARKER = "sjis"

# Sound preparation target (the renderer requires stereo 44.1khz input)
SOUND_SAMPLE_RATE = "44.1k"
SOUND_CHANNELS = 2
MP3_BITRATE = 320
SILENCE_THRESHOLD = "0.1%"

# Dispatcher
DISPATCH_CONCURRENCY = int(os.getenv("DISPATCH_CONCURRENCY", 128))
RENDER_REQUEST_TIMEOUT = 900


# === LOGGING SECTION ===

class CompanyFormatter(logging.Formatter):
    """
    FLOW: Receives a log record -> Extracts timestamp -> Formats according to company standard
    (e.g., [ Tue Jan 06 05:32:41 AM UTC 2026 ]) -> Prepends level and context -> Returns final string.
    """
    def format(self, record):
        dt = datetime.fromtimestamp(record.created)
        timestamp = dt.strftime("%a %b %d %I:%M:%S %p UTC %Y")
        context = getattr(record, 'context', 'root')
        message = f"[ {timestamp} ] : {record.levelname} : {context} : {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logger(name="bms", log_file=None, level=None):
    """
    FLOW: Initializes/Retrieves logger -> Checks for existing handlers to prevent duplicates ->
    Sets propagation for child loggers -> Attaches Console and optional File handlers with CompanyFormatter.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
    if log_file is None:
        log_file = os.getenv("LOG_FILE")

    logger = logging.getLogger(name)

    if name != "bms":
        # Children inherit the level and handlers of 'bms'
        logger.propagate = True
        setup_logger("bms", log_file=log_file, level=level)
        return logger

    logger.setLevel(level)
    if logger.handlers:
        return logger

    formatter = CompanyFormatter()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler (optional)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


# Global logger instance
logger = setup_logger()
