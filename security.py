import os
import hashlib
import secrets
import logging
from datetime import timedelta
from typing import Optional, Tuple

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from database import as_utc, get_db, serialize, to_oid, utcnow
from schemas import Session

logger = logging.getLogger(__name__)

APP_ENV = os.getenv("APP_ENV", "development")
SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", 7))
RESET_TOKEN_TTL_MINUTES = int(os.getenv("RESET_TOKEN_TTL_MINUTES", 60))

PRIVATE_USER_FIELDS = ("password_hash", "password_salt", "reset_token_hash", "reset_token_expires")

bearer = HTTPBearer(auto_error=False)


def is_production() -> bool:
    return APP_ENV == "production"


def sha256(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()


def hash_password(password: str, salt: Optional[str] = None) -> Tuple[str, str]:
    salt = salt or secrets.token_hex(16)
    return sha256(salt + password), salt


def verify_password(password: str, user: dict) -> bool:
    expected = user.get("password_hash", "")
    actual, _ = hash_password(password, user.get("password_salt", ""))
    return secrets.compare_digest(actual, expected)


def public_user(user: dict) -> dict:
    d = {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}
    return serialize(d)


def issue_token(db: Database, user_id: str) -> str:
    token = secrets.token_urlsafe(32)
    session = Session(
        token_hash=sha256(token),
        user_id=user_id,
        expires_at=utcnow() + timedelta(days=SESSION_TTL_DAYS),
    )
    db["session"].insert_one({**session.model_dump(), "created_at": utcnow()})
    return token


def revoke_token(db: Database, token: str) -> None:
    db["session"].delete_one({"token_hash": sha256(token)})


def issue_reset_token(db: Database, user: dict) -> str:
    token = secrets.token_urlsafe(24)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "reset_token_hash": sha256(token),
            "reset_token_expires": utcnow() + timedelta(minutes=RESET_TOKEN_TTL_MINUTES),
        }},
    )
    return token


def consume_reset_token(db: Database, token: str, new_password: str) -> dict:
    user = db["user"].find_one({"reset_token_hash": sha256(token)})
    if not user or as_utc(user.get("reset_token_expires")) < utcnow():
        raise HTTPException(status_code=400, detail="Password reset token is invalid or has expired")

    password_hash, salt = hash_password(new_password)
    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password_hash": password_hash, "password_salt": salt, "updated_at": utcnow()},
            "$unset": {"reset_token_hash": "", "reset_token_expires": ""},
        },
    )
    # a reset logs the account out everywhere
    db["session"].delete_many({"user_id": str(user["_id"])})
    logger.info("Password reset for user %s", user["_id"])
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Database = Depends(get_db),
) -> dict:
    if not credentials:
        raise HTTPException(status_code=401, detail="No token, authorization denied")

    session = db["session"].find_one({"token_hash": sha256(credentials.credentials)})
    if not session:
        raise HTTPException(status_code=401, detail="Token is not valid")
    if as_utc(session["expires_at"]) < utcnow():
        db["session"].delete_one({"_id": session["_id"]})
        raise HTTPException(status_code=401, detail="Token is not valid")

    user = db["user"].find_one({"_id": to_oid(session["user_id"], "User not found")})
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Token is not valid")

    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_active": utcnow()}})
    return user


def get_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> str:
    if not credentials:
        raise HTTPException(status_code=401, detail="No token, authorization denied")
    return credentials.credentials
