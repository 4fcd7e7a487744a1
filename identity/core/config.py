import secrets

from pydantic_settings import BaseSettings


def _generate_dev_secret() -> str:
    """Generate a random secret for local development only."""
    return secrets.token_hex(32)


class Settings(BaseSettings):
    # App
    app_name: str = "Phoenix Identity"
    debug: bool = False
    environment: str = "development"  # development, production
    log_level: str = ""  # DEBUG, INFO, WARNING, ERROR, CRITICAL (empty = auto based on environment)
    log_to_file: bool = True
    rate_limit_enabled: bool = True

    # Database (SQLite for local dev, PostgreSQL for production)
    database_url: str = "sqlite:///./identity.db"

    # JWT verification for admin routes. Tokens are issued by the auth service;
    # this service only decodes them.
    secret_key: str = ""
    algorithm: str = "HS256"

    # Frontend (invitation links point here)
    frontend_url: str = "http://localhost:3000"

    # CORS (comma-separated origins, empty = frontend_url only)
    allowed_origins: str = ""

    # Guardian invitations
    invitation_token_expiry_hours: int = 48
    invitation_cleanup_interval_minutes: int = 60

    # Staff PIN lockout
    pin_max_attempts: int = 5

    # Email
    sendgrid_api_key: str = ""
    from_email: str = "noreply@phoenix.local"
    from_name: str = "Phoenix"
    # SMTP (used when SendGrid is not configured)
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""

    # Email delivery policy, handed to the notification dispatcher
    email_max_attempts: int = 3
    email_backoff_seconds: str = "60,300,900"
    email_workers: int = 2

    class Config:
        env_file = ".env"
        extra = "ignore"

    def email_backoff(self) -> list[float]:
        """Parse the comma-separated backoff schedule into seconds."""
        return [float(s) for s in self.email_backoff_seconds.split(",") if s.strip()]


settings = Settings()

# Validate secret key
_KNOWN_WEAK_KEYS = {"your-secret-key-change-in-production", "changeme", "secret", ""}

if settings.secret_key in _KNOWN_WEAK_KEYS:
    if settings.environment == "production":
        raise RuntimeError(
            "SECRET_KEY is not set or uses a known weak default. "
            "Set a strong SECRET_KEY env var (e.g. `openssl rand -hex 32`)."
        )
    # Development: generate a random key so the app can start
    settings.secret_key = _generate_dev_secret()

settings.frontend_url = settings.frontend_url.strip().rstrip("/")
if not settings.frontend_url:
    raise RuntimeError("FRONTEND_URL is required to build invitation links")
if settings.environment == "production" and not settings.frontend_url.startswith("https://"):
    raise RuntimeError(f"FRONTEND_URL must use https:// in production (received {settings.frontend_url!r})")

if not 1 <= settings.invitation_token_expiry_hours <= 168:
    raise RuntimeError("INVITATION_TOKEN_EXPIRY_HOURS must be between 1 and 168")

if settings.pin_max_attempts < 1:
    raise RuntimeError("PIN_MAX_ATTEMPTS must be a positive integer")

if settings.email_max_attempts < 1:
    raise RuntimeError("EMAIL_MAX_ATTEMPTS must be a positive integer")
