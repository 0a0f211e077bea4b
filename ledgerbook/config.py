import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: str) -> list[str]:
    raw_value = os.getenv(name, default)
    return [item.strip() for item in raw_value.split(",") if item.strip()]


def _smtp_port() -> int:
    return int(os.getenv("SMTP_PORT", "587"))


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./ledgerbook.db")
    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_algorithm: str = os.getenv("ALGORITHM", "HS256")
    jwt_expire_minutes: int = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))
    otp_ttl_minutes: int = int(os.getenv("OTP_TTL_MINUTES", "5"))
    otp_verified_window_minutes: int = int(
        os.getenv("OTP_VERIFIED_WINDOW_MINUTES", "10")
    )
    require_verified_otp: bool = _env_bool("REQUIRE_VERIFIED_OTP", True)
    otp_unify_failures: bool = _env_bool("OTP_UNIFY_FAILURES", False)
    default_country_code: str = os.getenv("DEFAULT_COUNTRY_CODE", "91")
    fast2sms_api_key: str = os.getenv("FAST2SMS_API_KEY", "")
    fast2sms_url: str = os.getenv("OTP_URL", "https://www.fast2sms.com/dev/bulkV2")
    fast2sms_schedule_time: str = os.getenv("FAST2SMS_SCHEDULE_TIME", "")
    channel_timeout_seconds: float = float(os.getenv("CHANNEL_TIMEOUT_SECONDS", "10"))
    smtp_host: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _smtp_port()
    smtp_secure: bool = _env_bool("SMTP_SECURE", _smtp_port() == 465)
    smtp_user: str = os.getenv("SMTP_USER") or os.getenv("GMAIL_USER", "")
    smtp_password: str = (
        os.getenv("SMTP_PASSWORD") or os.getenv("GMAIL_APP_PASSWORD", "")
    )
    smtp_from_email: str = (
        os.getenv("SMTP_FROM_EMAIL")
        or os.getenv("GMAIL_FROM_EMAIL")
        or os.getenv("SMTP_USER")
        or os.getenv("GMAIL_USER")
        or "noreply@ledgerbook.app"
    )
    smtp_from_name: str = os.getenv("SMTP_FROM_NAME", "LedgerBook")
    placeholder_email_domain: str = os.getenv("PLACEHOLDER_EMAIL_DOMAIN", "ledgerbook")
    default_role: str = os.getenv("DEFAULT_ROLE", "managers")
    storage_backend: str = os.getenv("STORAGE_BACKEND", "local").strip().lower()
    upload_dir: str = os.getenv("UPLOAD_DIR", "uploads")
    r2_endpoint: str = os.getenv("R2_ENDPOINT", "")
    r2_access_key_id: str = os.getenv("R2_ACCESS_KEY_ID", "")
    r2_secret_access_key: str = os.getenv("R2_SECRET_ACCESS_KEY", "")
    r2_bucket_name: str = os.getenv("R2_BUCKET_NAME", "ledgerbook")
    r2_public_url: str = os.getenv("R2_PUBLIC_URL", "")
    cors_origins: list[str] = field(
        default_factory=lambda: _env_list("CORS_ORIGINS", "*")
    )
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    expose_error_details: bool = _env_bool("EXPOSE_ERROR_DETAILS", False)


settings = Settings()
