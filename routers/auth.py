import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, to_oid
from schemas import User as UserSchema
from security import (
    consume_reset_token,
    get_current_user,
    get_token,
    hash_password,
    issue_reset_token,
    issue_token,
    is_production,
    public_user,
    revoke_token,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_SENT = "If an account exists for that email, a password reset has been started"


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: str = Field(..., min_length=6)


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")

    password_hash, salt = hash_password(payload.password)
    user = UserSchema(name=payload.name, email=email, password_hash=password_hash, password_salt=salt)
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")

    logger.info("Registered user %s", user_id)
    token = issue_token(db, user_id)
    doc = db["user"].find_one({"_id": to_oid(user_id)})
    return {"token": token, "user": public_user(doc)}


@router.post("/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user):
        raise HTTPException(status_code=400, detail="Invalid credentials")

    token = issue_token(db, str(user["_id"]))
    return {"token": token, "user": public_user(user)}


@router.get("/me")
def me(user: dict = Depends(get_current_user)):
    return public_user(user)


@router.post("/logout")
def logout(token: str = Depends(get_token), user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    revoke_token(db, token)
    return {"message": "Logged out successfully"}


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if is_production():
        # same answer whether or not the account exists, and the token never leaves the server
        if user:
            issue_reset_token(db, user)
            logger.info("Password reset requested for user %s", user["_id"])
        return {"message": RESET_SENT}

    if not user:
        raise HTTPException(status_code=404, detail="No account found with that email")

    token = issue_reset_token(db, user)
    # no mail transport outside production: the token goes back to the caller
    return {"message": "Password reset token generated", "reset_token": token}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, db: Database = Depends(get_db)):
    consume_reset_token(db, payload.token, payload.password)
    return {"message": "Password has been reset successfully"}
