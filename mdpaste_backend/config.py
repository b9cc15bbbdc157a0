from __future__ import annotations

import os
from pathlib import Path


_PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Root directory holding one subdirectory per paste or alias.
# Default: project-local ./notes. Override with env var MDPASTE_NOTES_ROOT.
_root_raw = os.environ.get("MDPASTE_NOTES_ROOT")
if _root_raw and _root_raw.strip():
    NOTES_ROOT = Path(_root_raw)
else:
    NOTES_ROOT = _PROJECT_ROOT / "notes"
NOTES_ROOT = NOTES_ROOT.resolve()

# user:bcrypt-hash lines, one per account.
HTPASSWD_PATH = Path(os.environ.get("MDPASTE_HTPASSWD_PATH", str(_PROJECT_ROOT / "config" / ".htpasswd")))

# URL prefix when the app is mounted below the site root, e.g. "/paste".
BASE_PATH = os.environ.get("MDPASTE_BASE_PATH", "").rstrip("/")

MAX_UPLOAD_BYTES = int(os.environ.get("MDPASTE_MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))  # 20MB

LOG_LEVEL = os.environ.get("MDPASTE_LOG_LEVEL", "INFO").upper()

# On-disk layout of a paste directory.
META_FILENAME = "_meta.json"
ALIAS_FILENAME = "_alias.json"
PROMOTION_MARKER_FILENAME = "_promote.json"
FILES_SUBDIR = "files"

# Generated identifiers.
ID_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
ID_MIN_LENGTH = 20
ID_MAX_LENGTH = 30
ID_GENERATION_ATTEMPTS = 10

# Binary sniffing for file/file-link attachments.
BINARY_SAMPLE_BYTES = 8192
BINARY_THRESHOLD = 0.3

DEFAULT_DISPLAY_MODE = "multi-normal"
DEFAULT_RENDER_MODE = "plain"
