import re
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from identity.core.config import settings

# Minimum 8 chars, at least one uppercase, one lowercase, one digit, one special char
_PASSWORD_MIN_LENGTH = 8
_PASSWORD_PATTERN = re.compile(
    r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[!@#$%^&*()_+\-=\[\]{};\':\"\\|,.<>\/?`~]).+$'
)

# Staff PINs are 4-8 digits
_PIN_PATTERN = re.compile(r"^\d{4,8}$")


def validate_password_strength(password: str) -> str | None:
    """Return an error message if the password is too weak, or None if OK."""
    if len(password) < _PASSWORD_MIN_LENGTH:
        return f"Password must be at least {_PASSWORD_MIN_LENGTH} characters"
    if not _PASSWORD_PATTERN.match(password):
        return "Password must include uppercase, lowercase, digit, and special character"
    return None


def validate_pin_format(pin: str) -> str | None:
    """Return an error message if the PIN is malformed, or None if OK."""
    if not _PIN_PATTERN.match(pin or ""):
        return "PIN must consist of 4 to 8 digits"
    return None


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        hashed_password.encode("utf-8")
    )


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt()
    ).decode("utf-8")


# PINs share the bcrypt primitive; the separate names keep call sites honest
# about which secret they handle.
def hash_pin(pin: str) -> str:
    return get_password_hash(pin)


def verify_pin(pin: str, pin_hash: str | None) -> bool:
    return verify_password(pin, pin_hash)


def generate_token() -> str:
    """Random URL-safe token for invitation links."""
    return secrets.token_urlsafe(32)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Sign a bearer token the admin routes accept (service-to-service and tests)."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate an access token. Returns payload or None."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if payload.get("type") != "access":
        return None
    return payload
