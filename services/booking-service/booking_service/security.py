from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import JWT_ALGORITHM, JWT_SECRET
from .errors import Unauthenticated

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Authenticated principal id (the token's `sub`)."""
    token = None
    if creds and creds.scheme.lower() == "bearer":
        token = creds.credentials

    if not token:
        raise Unauthenticated("missing bearer token")

    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise Unauthenticated(f"invalid token: {e}") from e

    sub = payload.get("sub")
    if not sub:
        raise Unauthenticated("token has no sub")

    request.state.principal_id = str(sub)
    return str(sub)
