"""
Access gate

Users sign in with email and password and receive a signed bearer token.
Route dependencies turn that token into an identity or reject the request.
"""
import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import create_document, ensure_object_id, get_db, utcnow
from errors import (
    AuthenticationFailedError,
    EmailAlreadyRegisteredError,
    NotAuthorizedError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return hmac.new(config.SECRET_KEY.encode(), password.encode(), hashlib.sha256).hexdigest()


def verify_password(password: str, password_hash: str) -> bool:
    return hmac.compare_digest(hash_password(password), password_hash)


def issue_token(user_id: str, now: Optional[datetime] = None) -> str:
    issued = now or datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "iat": issued,
        "exp": issued + timedelta(seconds=config.TOKEN_TTL_SECONDS),
    }
    return jwt.encode(claims, config.SECRET_KEY, algorithm=JWT_ALGORITHM)


def read_token(token: str) -> str:
    """Return the user id carried by a valid token."""
    try:
        claims = jwt.decode(
            token,
            config.SECRET_KEY,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationFailedError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationFailedError("Invalid token")
    return claims["sub"]


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name", ""),
        "email": user.get("email"),
        "role": user.get("role", "user"),
    }


def is_admin(user: dict) -> bool:
    return user.get("role") == "admin"


def register_user(db: Database, name: str, email: str, password: str, role: str = "user") -> dict:
    email = email.lower()
    if db["user"].find_one({"email": email}):
        raise EmailAlreadyRegisteredError(email)
    try:
        uid = create_document(db, "user", {
            "name": name,
            "email": email,
            "password_hash": hash_password(password),
            "role": role,
        })
    except DuplicateKeyError:
        raise EmailAlreadyRegisteredError(email)
    logger.info("Registered %s account %s", role, email)
    return db["user"].find_one({"_id": ensure_object_id(uid)})


def authenticate(db: Database, email: str, password: str) -> dict:
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise AuthenticationFailedError("Invalid credentials")
    return user


def seed_admin(db: Database, email: Optional[str], password: Optional[str]) -> None:
    """Make sure the configured administrator exists with the configured password."""
    if not email or not password:
        return
    email = email.lower()
    existing = db["user"].find_one({"email": email})
    if existing:
        db["user"].update_one(
            {"_id": existing["_id"]},
            {"$set": {"role": "admin", "password_hash": hash_password(password), "updated_at": utcnow()}},
        )
        return
    register_user(db, "Admin", email, password, role="admin")


# ----- Dependencies -----

def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> dict:
    if not authorization:
        raise AuthenticationFailedError()
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationFailedError("Bearer token required")
    user_id = read_token(token.strip())
    try:
        _id = ensure_object_id(user_id, "token")
    except ValidationFailedError:
        raise AuthenticationFailedError("Invalid token")
    user = db["user"].find_one({"_id": _id})
    if not user:
        raise AuthenticationFailedError("Unknown user")
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not is_admin(user):
        raise NotAuthorizedError("Admin access required")
    return user
