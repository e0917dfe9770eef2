"""Configuration for the local speed reader, loaded from the environment.

python-dotenv reads a ``.env`` file from the working directory on import;
every value below can be overridden by a real environment variable or, for
the server, by a command-line flag.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

from speedread_engine import DEFAULT_RATE, clamp_rate

load_dotenv()


def load_int(name: str, default: int) -> int:
    """Integer from environment variable ``name``, or ``default`` when unset.

    Raises ValueError naming the variable when the value is not an integer.
    """
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


# -------------------------------
# Server
# -------------------------------
HOST = os.getenv("SPEEDREAD_HOST", "127.0.0.1")
PORT = load_int("SPEEDREAD_PORT", 5000)
MAX_UPLOAD_MB = load_int("SPEEDREAD_MAX_UPLOAD_MB", 200)
LOG_LEVEL = os.getenv("SPEEDREAD_LOG_LEVEL", "INFO").upper()

# -------------------------------
# Reader
# -------------------------------
ALLOWED_EXTENSIONS: set[str] = {".pdf", ".epub"}


def load_default_rate() -> int:
    """Starting WPM from ``SPEEDREAD_DEFAULT_WPM``, clamped to the legal range.

    Raises ValueError when the variable is set but is not an integer.
    """
    return clamp_rate(load_int("SPEEDREAD_DEFAULT_WPM", DEFAULT_RATE))


DEFAULT_WPM = load_default_rate()
