import os
from dataclasses import dataclass

DEFAULT_JOTFORM_IPS = "54.208.102.37,54.208.102.38,54.208.102.39,54.208.102.40"


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    jotform_webhook_secret: str
    jotform_allowed_ips: tuple[str, ...]
    submission_cache_size: int

    admin_ip_allowlist: tuple[str, ...]
    rate_limit_enabled: bool
    rate_limit_backend: str

    smtp_server: str
    smtp_port: int
    smtp_use_tls: bool
    smtp_username: str
    smtp_password: str
    email_from: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_list(name: str, default: str = "") -> tuple[str, ...]:
    raw = _getenv(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development").lower(),
        database_url=_getenv("DATABASE_URL", "sqlite:///portal.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        jotform_webhook_secret=_getenv("JOTFORM_WEBHOOK_SECRET", ""),
        jotform_allowed_ips=_getenv_list("JOTFORM_ALLOWED_IPS", DEFAULT_JOTFORM_IPS),
        submission_cache_size=_getenv_int("SUBMISSION_CACHE_SIZE", 10000),
        admin_ip_allowlist=_getenv_list("ADMIN_IP_ALLOWLIST"),
        rate_limit_enabled=_getenv("RATE_LIMIT_ENABLED", "1") != "0",
        rate_limit_backend=_getenv("RATE_LIMIT_BACKEND", "memory").lower(),
        smtp_server=_getenv("SMTP_SERVER"),
        smtp_port=_getenv_int("SMTP_PORT", 587),
        smtp_use_tls=_getenv("SMTP_USE_TLS", "1") == "1",
        smtp_username=_getenv("SMTP_USERNAME"),
        smtp_password=_getenv("SMTP_PASSWORD"),
        email_from=_getenv("EMAIL_FROM") or _getenv("SMTP_USERNAME"),
    )


def is_development(env: str | None) -> bool:
    return (env or "").strip().lower() in ("development", "dev", "local")


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "JOTFORM_WEBHOOK_SECRET": s.jotform_webhook_secret,
        "JOTFORM_ALLOWED_IPS": list(s.jotform_allowed_ips),
        "SUBMISSION_CACHE_SIZE": s.submission_cache_size,
        "ADMIN_IP_ALLOWLIST": list(s.admin_ip_allowlist),
        "RATE_LIMIT_ENABLED": s.rate_limit_enabled,
        "RATE_LIMIT_BACKEND": s.rate_limit_backend,
        "SMTP_SERVER": s.smtp_server,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "EMAIL_FROM": s.email_from,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # webhook payloads are small; 5MB is generous
        "MAX_CONTENT_LENGTH": 5 * 1024 * 1024,
    }
