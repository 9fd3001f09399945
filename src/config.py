import os
from dotenv import load_dotenv

load_dotenv()

# Base URL of the admin API (the builder endpoints hang off this)
FORM_BLDR_BASE_URL = os.getenv("FORM_BLDR_BASE_URL", "http://localhost:3000/api/admin/v1").rstrip("/")

# Auth / tenant headers. All optional; the admin API normally runs on a session cookie.
FORM_BLDR_API_TOKEN = os.getenv("FORM_BLDR_API_TOKEN")
FORM_BLDR_TENANT_SLUG = (os.getenv("FORM_BLDR_TENANT_SLUG") or "").strip().lower() or None
FORM_BLDR_DEV_USER_ID = (os.getenv("FORM_BLDR_DEV_USER_ID") or "").strip() or None

# Transport timeout; no retries on top of it.
TIMEOUT_S = float(os.getenv("FORM_BLDR_TIMEOUT_S", "15"))

# Default form for the CLI
FORM_ID = os.getenv("FORM_BLDR_FORM_ID")

# Optional override for the field library catalog (file or directory of YAML/JSON)
LIBRARY_PATH = os.getenv("FORM_BLDR_LIBRARY_PATH")

# --- Instrumentation / diagnostics ---
LOG_MODE = os.getenv("FORM_BLDR_LOG_MODE", "live").lower()  # live | debug | trace
INSTRUMENT_DROPS: bool = True
LOG_RATE_LIMITS_S = {
    "DROP.indicator": 0.25,
    "STORE.snapshot": 60.0,
}

# --- Field keys ---
KEY_MAX_LENGTH = 64
KEY_SUFFIX_START = 2
KEY_FALLBACK = "field"

# Fields whose label carries this marker are system fields and can't be deleted
SYSTEM_FIELD_MARKER = "(ocr)"

# --- Config clamps (mirrors what the admin UI enforces) ---
RATING_MAX_RANGE = (1, 10)
RATING_MAX_DEFAULT = 5
ATTACHMENT_MAX_FILES_RANGE = (1, 5)
ATTACHMENT_ACCEPT_DEFAULT = ("image/*", "application/pdf")
AUDIO_DURATION_RANGE_S = (5, 600)
AUDIO_DURATION_DEFAULT_S = 60

# Field patch keys the builder endpoint accepts
PATCHABLE_FIELD_KEYS = {"key", "label", "required", "isActive", "placeholder", "helpText", "config"}
PATCHABLE_FORM_KEYS = {"name", "status", "description", "config"}
