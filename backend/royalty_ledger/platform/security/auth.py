import hmac

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from royalty_ledger.platform.config import settings
from royalty_ledger.platform.db.models import Account
from royalty_ledger.platform.db.session import get_session

_bearer = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=401, detail="Unauthorized")


async def get_current_account(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    session: AsyncSession = Depends(get_session),
) -> Account:
    if credentials is None:
        raise _unauthorized()

    token = credentials.credentials

    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise _unauthorized() from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise _unauthorized()

    account = await session.get(Account, subject)
    if account is None or account.deleted_at is not None:
        raise _unauthorized()

    return account


async def require_internal_key(x_internal_key: str | None = Header(default=None)) -> None:
    """Guards the endpoints revenue recorders and operators call."""
    expected = settings.internal_api_key
    if not expected:
        raise HTTPException(status_code=403, detail="Internal API disabled")
    if not x_internal_key or not hmac.compare_digest(x_internal_key, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
