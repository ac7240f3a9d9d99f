import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from . import config
from .errors import InvalidCredentials, InvalidOrExpiredToken, MissingToken
from .logs import log_event

router = APIRouter()

JWT_ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
# auto_error=False so a missing header maps to our own 401 body instead of FastAPI's default
oauth2_optional = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)


class LoginBody(BaseModel):
    # Loose types: any mismatched pair is a 401, not a validation error
    id: Any = None
    password: Any = None


class LoginResponse(BaseModel):
    token: str
    userId: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def password_matches(stored: str, given: str) -> bool:
    # Entries in the credential file may be bcrypt hashes or plain text.
    if pwd_context.identify(stored, required=False):
        try:
            return pwd_context.verify(given, stored)
        except ValueError:
            return False
    return hmac.compare_digest(stored.encode("utf-8"), given.encode("utf-8"))


def authenticate(users: Mapping[str, str], user_id: Any, password: Any) -> str:
    if not isinstance(user_id, str) or not user_id or not isinstance(password, str):
        raise InvalidCredentials()
    stored = users.get(user_id)
    if stored is None or not password_matches(stored, password):
        raise InvalidCredentials()
    return user_id


def issue_token(user_id: str, *, secret: str, expires_in: timedelta, now: Optional[datetime] = None) -> str:
    exp = (now or _utcnow()) + expires_in
    payload = {"sub": user_id, "exp": exp}
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def verify_token(token: Optional[str], *, secret: str, now: Optional[datetime] = None) -> str:
    """Return the user id carried by a session token.

    Signature and expiry are checked here rather than by python-jose so the
    clock can be supplied by the caller. Both failures raise the same error.
    """
    if not token:
        raise MissingToken()
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], options={"verify_exp": False})
    except JWTError:
        raise InvalidOrExpiredToken()
    uid = payload.get("sub")
    exp = payload.get("exp")
    if not uid or not isinstance(exp, (int, float)):
        raise InvalidOrExpiredToken()
    if (now or _utcnow()).timestamp() >= exp:
        raise InvalidOrExpiredToken()
    return str(uid)


async def get_current_user(token: Optional[str] = Depends(oauth2_optional)) -> str:
    return verify_token(token, secret=config.jwt_secret())


@router.post("/api/login", response_model=LoginResponse)
async def login(body: LoginBody, request: Request):
    users: Mapping[str, str] = request.app.state.users
    try:
        uid = authenticate(users, body.id, body.password)
    except InvalidCredentials:
        log_event("auth", event="login_failed", user_id=body.id)
        raise
    token = issue_token(uid, secret=config.jwt_secret(), expires_in=config.token_expiry())
    log_event("auth", event="login", user_id=uid)
    return {"token": token, "userId": uid}


@router.get("/api/me")
async def me(user_id: str = Depends(get_current_user)):
    return {"userId": user_id}
