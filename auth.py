import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from config import Settings, get_settings
from database import get_db, to_object_id

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


# Passwords
SALT_LEN = 16
# PBKDF2 work factor.
PBKDF2_ITERATIONS = 390_000

def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(SALT_LEN)
    h = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return f"{salt}${h}"

def verify_password(password: str, stored: str) -> bool:
    try:
        salt, _hash = stored.split("$")
    except ValueError:
        return False
    return hmac.compare_digest(hash_password(password, salt), stored)


# Tokens

class TokenError(Exception):
    pass


def create_token(user_id: str, settings: Settings, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(days=settings.token_ttl_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, settings: Settings) -> str:
    """Return the user id carried by a valid, unexpired token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e
    return str(payload["sub"])


# Request session

@dataclass(frozen=True, slots=True)
class Session:
    """Identity of the caller, resolved once per request from the bearer token."""
    user_id: str
    email: str

    def owns(self, doc: dict) -> bool:
        return str(doc.get("owner")) == self.user_id


_bearer = HTTPBearer(auto_error=False)


def get_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Session:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    try:
        user_id = decode_token(credentials.credentials, settings)
    except TokenError as e:
        logger.info("Rejected token: %s", e)
        raise HTTPException(status_code=401, detail=f"Not authorized, {str(e).lower()}")

    oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid is not None else None
    if not user:
        raise HTTPException(status_code=401, detail="Not authorized, user not found")
    return Session(user_id=str(user["_id"]), email=user["email"])
