from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from jose import JWTError, jwt

from backoffice.core.config import settings

ALGORITHM = "HS256"
ALLOWED_ROLES = {"admin", "salesperson"}


class TokenValidationError(ValueError):
    pass


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    role: str


def create_token(
    subject: str,
    expires_delta: timedelta,
    token_type: str,
    role: str = "salesperson",
    jti: str | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "type": token_type,
        "role": role,
        "jti": jti or str(uuid4()),
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str, *, expected_type: str | None = None) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise TokenValidationError("Invalid token") from exc

    subject = payload.get("sub")
    if not subject:
        raise TokenValidationError("Invalid token subject")

    token_type = payload.get("type")
    if expected_type and token_type != expected_type:
        raise TokenValidationError("Invalid token type")

    if not payload.get("jti"):
        raise TokenValidationError("Invalid token id")

    return payload


def identity_from_token(token: str) -> CallerIdentity:
    payload = decode_token(token, expected_type="access")
    role = str(payload.get("role") or "salesperson").strip().lower()
    if role not in ALLOWED_ROLES:
        raise TokenValidationError("Invalid token role")
    return CallerIdentity(user_id=str(payload["sub"]), role=role)


def create_access_token(user_id: str, role: str = "salesperson") -> str:
    """Issue a token the way the external auth provider does; used by tooling and tests."""
    return create_token(
        subject=user_id,
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
        token_type="access",
        role=role,
    )
