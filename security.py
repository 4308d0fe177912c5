import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import BCRYPT_ROUNDS, JWT_ALGORITHM, JWT_EXPIRES_MIN, JWT_SECRET
from database import get_db
from errors import Forbidden, Unauthenticated
from schemas import Role

logger = logging.getLogger(__name__)

auth_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


def create_token(user: dict) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "role": user.get("role"),
        "iat": now,
        "exp": now + timedelta(minutes=JWT_EXPIRES_MIN),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except jwt.InvalidTokenError as e:
        logger.info("Rejected token: %s", e)
        raise Unauthenticated("Invalid token")


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    db=Depends(get_db),
) -> dict:
    """Resolve the bearer token to the user document it was issued for."""
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Not authorized to access this route - no token provided")
    payload = decode_token(credentials.credentials)
    try:
        user_id = ObjectId(payload.get("sub"))
    except (InvalidId, TypeError):
        raise Unauthenticated("Invalid token")
    user = db["user"].find_one({"_id": user_id})
    if not user:
        logger.info("Token subject %s no longer exists", user_id)
        raise Unauthenticated("User not found for this token")
    return user


def require_role(*roles: Role):
    def _checker(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise Forbidden(f"Role {user.get('role')} is not authorized to access this route")
        return user
    return _checker


def is_coordinator(user: dict) -> bool:
    return user.get("role") == "coordinator"


def ensure_owner(user: dict, record: dict, action: str = "access") -> None:
    # coordinators see every record
    if is_coordinator(user):
        return
    if record.get("student") != user["_id"]:
        raise Forbidden(f"Not authorized to {action} this internship")
