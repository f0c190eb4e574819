from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer

from backoffice.core.security import CallerIdentity, TokenValidationError, identity_from_token

# Tokens are issued by the external auth provider; this service only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


def get_current_identity(token: str | None = Depends(oauth2_scheme)) -> CallerIdentity:
    if not token:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return identity_from_token(token)
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
