import hmac

from fastapi import Depends, Header, HTTPException, status

from jobsync.core.auth import OPERATOR_SCOPES, TRIGGER_SCOPES, Principal, PrincipalType
from jobsync.core.config import Settings, get_settings


async def get_sync_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    """Resolve the caller of trigger and maintenance endpoints from a shared bearer secret."""
    if not settings.trigger_secret and not settings.admin_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="sync trigger auth is not configured",
        )

    token = _bearer_token(authorization)
    if settings.admin_secret and hmac.compare_digest(token, settings.admin_secret):
        return Principal(principal_type=PrincipalType.OPERATOR, subject="operator", scopes=set(OPERATOR_SCOPES))
    if settings.trigger_secret and hmac.compare_digest(token, settings.trigger_secret):
        return Principal(principal_type=PrincipalType.TRIGGER, subject="trigger", scopes=set(TRIGGER_SCOPES))

    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")


def _bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="sync auth requires bearer token",
        )
    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")
    return token
