"""Application-wide configuration constants."""

import os
from pathlib import Path


def _env(name: str, default: str) -> str:
    return os.environ.get(f"DROPWIRE_{name}", default)


# --- Identity ---
USERNAME = _env("USERNAME", "")

# --- Networking ---
SERVER_URL = _env("SERVER_URL", "ws://localhost:8081")
RECONNECT_INTERVAL = float(_env("RECONNECT_INTERVAL", "3"))  # seconds

API_HOST = _env("API_HOST", "127.0.0.1")
API_PORT = int(_env("API_PORT", "8765"))
UI_ORIGINS = _env(
    "UI_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
).split(",")

# --- Transfer ---
# Both are replaced by SERVER_CONFIG once the server sends it.
DEFAULT_CHUNK_SIZE = int(_env("CHUNK_SIZE", str(64 * 1024)))  # 64 KB
DEFAULT_MAX_FILE_SIZE = int(_env("MAX_FILE_SIZE", str(100 * 1024 * 1024)))  # 100 MB
CHUNK_SEND_DELAY = float(_env("CHUNK_SEND_DELAY", "0.005"))  # seconds between chunks
CHECKSUM_PREFIX_LEN = 16  # hex chars shown in mismatch diagnostics

# --- Storage ---
DEFAULT_SAVE_DIR = _env(
    "SAVE_DIR", str(Path.home() / "Downloads" / "Dropwire")
)
AUTO_SAVE = _env("AUTO_SAVE", "false").lower() in ("1", "true", "yes")
# Verified downloads kept in memory until saved; oldest are dropped past this
MAX_RETAINED_BYTES = int(_env("MAX_RETAINED_BYTES", str(256 * 1024 * 1024)))  # 256 MB
