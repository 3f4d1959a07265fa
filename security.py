import logging
import os
from typing import Optional

from fastapi import Depends, HTTPException, WebSocket
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


class AuthenticationError(Exception):
    """Missing, invalid or expired credential."""


def verify_token(token: Optional[str]) -> str:
    """Decode a bearer token and return the user id it was issued for."""
    if not token:
        raise AuthenticationError("missing token")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise AuthenticationError(str(exc)) from exc
    user_id = payload.get("sub") or payload.get("userId")
    if not user_id:
        raise AuthenticationError("token has no subject")
    return str(user_id)


def extract_credential(websocket: WebSocket) -> Optional[str]:
    """Handshake credential: `?token=` query parameter, else an Authorization header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


async def get_current_user_id(token: str = Depends(oauth2_scheme)) -> str:
    try:
        return verify_token(token)
    except AuthenticationError as exc:
        logger.warning("Rejected bearer token: %s", exc)
        raise HTTPException(status_code=401, detail="Could not validate credentials")
