"""
Homecare Configuration
Loads settings from environment variables with sensible defaults.
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

# Load .env file
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)


def _number(name: str, default: str, cast=int):
    """Read a numeric env var, refusing to start on a malformed value."""
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        _logger.critical(f"{name}={raw!r} is not a valid number — cannot start.")
        raise ValueError(f"{name} must be a number, got {raw!r}")


class Config:
    """Application configuration."""

    # Remote API: an empty base URL runs every store in offline (seed data) mode
    API_BASE_URL = os.getenv('API_BASE_URL', '')
    API_KEY = os.getenv('API_KEY', '')
    API_TIMEOUT_SECONDS = _number('API_TIMEOUT_SECONDS', '10', float)

    # Background sync workers
    SYNC_WORKERS = _number('SYNC_WORKERS', '4')

    # Calendar marking colors (service dots override event dots)
    SERVICE_DOT_COLOR = os.getenv('SERVICE_DOT_COLOR', '#e6d592')
    EVENT_DOT_COLOR = os.getenv('EVENT_DOT_COLOR', '#555555')
    SELECTED_TEXT_COLOR = os.getenv('SELECTED_TEXT_COLOR', '#FFFFFF')


# Singleton instance
config = Config()
