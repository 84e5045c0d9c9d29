import logging
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from config import Settings
from database import find_by_id
from mailer import Mailer
from security import PasswordHasher, TokenError, TokenService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# -----------------------------
# Application collaborators
# -----------------------------
def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_tokens(request: Request) -> TokenService:
    return request.app.state.tokens


def get_hasher(request: Request) -> PasswordHasher:
    return request.app.state.hasher


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


# -----------------------------
# Identity
# -----------------------------
def bearer_token(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    return credentials.credentials if credentials else None


def _resolve_user(token: Optional[str], tokens: TokenService, db: Database) -> Dict[str, Any]:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Неавторизовано, ви повинні виконати вхід!",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception
    try:
        payload = tokens.decode_access(token)
    except TokenError as e:
        logger.warning("Rejected access token: %s", e)
        raise credentials_exception
    user = find_by_id(db, "user", payload.get("sub"), {"password_hash": 0})
    if not user:
        raise credentials_exception
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    tokens: TokenService = Depends(get_tokens),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    return _resolve_user(bearer_token(credentials), tokens, db)


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    tokens: TokenService = Depends(get_tokens),
    db: Database = Depends(get_db),
) -> Optional[Dict[str, Any]]:
    token = bearer_token(credentials)
    if not token:
        return None
    try:
        return _resolve_user(token, tokens, db)
    except HTTPException:
        return None


def require_role(*roles: str):
    def checker(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return checker


require_staff = require_role("admin", "moderator")
require_admin = require_role("admin")


def user_id_of(user: Optional[Dict[str, Any]]) -> Optional[str]:
    return str(user["_id"]) if user else None
