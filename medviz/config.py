"""Runtime configuration read from the environment (and an optional .env)."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(dotenv_path=".env", override=False)


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip() in ("1", "true", "True", "yes", "YES")


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "") or default)
    except ValueError:
        return default


SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
DB_PATH = Path(os.getenv("MEDVIZ_DB_PATH", "data/medviz.db"))
# comma separated; "*" allows any origin but then no cookies are shared
CORS_ORIGINS = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# callers may bound input; the extractor itself does not
MAX_REPORT_CHARS = _int("MEDVIZ_MAX_REPORT_CHARS", 20000)


def imagegen_enabled() -> bool:
    """Image generation is opt-in; read at call time so tests can toggle it."""
    return _flag("MEDVIZ_ALLOW_IMAGEGEN")


def image_model() -> str:
    return os.getenv("OPENAI_IMAGE_MODEL", "dall-e-3").strip() or "dall-e-3"


def image_size() -> str:
    return os.getenv("OPENAI_IMAGE_SIZE", "1024x1024").strip() or "1024x1024"


def openai_timeout() -> int:
    return _int("OPENAI_TIMEOUT", 60)
