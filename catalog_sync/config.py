# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


class Settings:
    # ── WooCommerce / WordPress ──────────────────────────────────────────────
    WC_BASE_URL: str = _rstrip_slash(os.getenv("WC_BASE_URL", ""))
    WC_API_KEY: str = os.getenv("WC_API_KEY", "")
    WC_API_SECRET: str = os.getenv("WC_API_SECRET", "")
    WC_TIMEOUT: float = _get_float("WC_TIMEOUT", 20.0)
    WC_VERIFY_SSL: bool = _get_bool("WC_VERIFY_SSL", True)

    # WP auth (Application Password) for media library lookups
    WP_USERNAME: str = os.getenv("WP_USERNAME", "")
    WP_PASSWORD: str = os.getenv("WP_APP_PASSWORD", "")  # keep the name WP_PASSWORD in code

    # Regex overriding the built-in "SKU is already being processed" phrase set
    WOO_CONFLICT_PATTERN: str = os.getenv("WOO_CONFLICT_PATTERN", "")

    # ── Sources ──────────────────────────────────────────────────────────────
    XML_PATH: str = os.getenv("XML_PATH", "")
    NEW_SYSTEM_API_URL: str = os.getenv("NEW_SYSTEM_API_URL", "")
    NEW_SYSTEM_IMAGE_BASE_URL: str = _rstrip_slash(os.getenv("NEW_SYSTEM_IMAGE_BASE_URL", ""))

    # ── Admin Panel ──────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    # ── Storage ──────────────────────────────────────────────────────────────
    # data directory holds reports/, uploads/ and the SQLite settings database
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    REPORT_RETENTION: int = _get_int("REPORT_RETENTION", 50)


settings = Settings()
