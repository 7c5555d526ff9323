import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Repo root is always the parent of /backend (i.e., sulabh/)
repo_root = Path(__file__).resolve().parent.parent

# Load local environment variables (do NOT commit secrets). Process env wins.
load_dotenv(repo_root / ".env", override=False)


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    app_name: str = "SULABH Reports Backend"
    env: str = os.getenv("APP_ENV", os.getenv("ENV", "local"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_exp_minutes: int = int(os.getenv("JWT_EXP_MINUTES", "480"))
    disable_auth: bool = _flag("DISABLE_AUTH", "false")

    cors_origins: str = os.getenv("CORS_ORIGINS", "http://localhost:5173")

    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./sulabh.db")

    # Complaint store: "database" (SQLAlchemy) or "memory" (demo rows from the sample CSV).
    data_backend: str = os.getenv("DATA_BACKEND", "database").strip().lower()

    # Demo accounts (MVP); defaults are for local demo only
    admin_username: str = os.getenv("ADMIN_USER", os.getenv("ADMIN_USERNAME", "admin"))
    admin_password: str = os.getenv("ADMIN_PASS", os.getenv("ADMIN_PASSWORD", "admin123"))
    authority_username: str = os.getenv("AUTHORITY_USERNAME", "authority")
    authority_password: str = os.getenv("AUTHORITY_PASSWORD", "authority123")
    authority_department: str = os.getenv("AUTHORITY_DEPARTMENT", "Water Supply")
    citizen_username: str = os.getenv("CITIZEN_USERNAME", "citizen")
    citizen_password: str = os.getenv("CITIZEN_PASSWORD", "citizen123")
    ngo_username: str = os.getenv("NGO_USERNAME", "ngo")
    ngo_password: str = os.getenv("NGO_PASSWORD", "ngo123")

    # Cache service. When CACHE_SERVICE_URL is set the backend talks to a remote
    # cache endpoint over HTTP; otherwise the in-process cache table is used.
    cache_enabled: bool = _flag("CACHE_ENABLED", "true")
    cache_service_url: str | None = os.getenv("CACHE_SERVICE_URL") or None
    cache_service_token: str | None = os.getenv("CACHE_SERVICE_TOKEN") or None
    cache_timeout_s: int = int(os.getenv("CACHE_TIMEOUT_S", "5"))
    cache_default_ttl_s: int = int(os.getenv("CACHE_DEFAULT_TTL_S", "300"))

    # Login rate limiting: fixed window counter, "memory" or "database".
    rate_limit_backend: str = os.getenv("RATE_LIMIT_BACKEND", "memory").strip().lower()
    login_max_attempts: int = int(os.getenv("LOGIN_MAX_ATTEMPTS", "5"))
    login_lockout_s: int = int(os.getenv("LOGIN_LOCKOUT_S", str(15 * 60)))

    # Data paths. Defaults are absolute under repo root,
    # so running scripts from any cwd still works.
    data_raw_dir: str = os.getenv("DATA_RAW_DIR", str((repo_root / "data/raw").resolve()))

    # Seeding
    seed_sample_data: bool = _flag("SEED_SAMPLE_DATA", "true")
    sample_csv_path: str = os.getenv(
        "SAMPLE_CSV_PATH", str((repo_root / "data/raw/sample_complaints.csv").resolve())
    )

    recreate_db_on_startup: bool = _flag("RECREATE_DB_ON_STARTUP", "false")


settings = Settings()
