from datetime import datetime, timedelta, timezone

from jose import jwt

from royalty_ledger.platform.config import settings


def create_access_token(account_id: str, *, expires_minutes: int | None = None) -> str:
    """Token whose subject is the account the caller acts as."""
    now = datetime.now(timezone.utc)
    lifetime = settings.jwt_expiration_minutes if expires_minutes is None else expires_minutes

    payload = {
        "sub": account_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=lifetime)).timestamp()),
    }

    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
