# auth.py

from datetime import datetime, timedelta
from typing import Callable

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

import config
from database import get_db
from models import User, UserRole

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

CREDENTIALS_ERROR = HTTPException(
    status_code=401, detail="Could not validate credentials", headers={"WWW-Authenticate": "Bearer"},
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def authenticate_operator(db: Session, email: str, password: str):
    """Return the operator for these credentials, or None."""
    user = db.query(User).filter(User.email == email).first()
    if user is None or not pwd_context.verify(password, user.password_hash):
        return None
    return user

def create_access_token(user: User, minutes: int = config.ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    claims = {
        "sub": str(user.id),
        "role": user.role.value,
        "exp": datetime.utcnow() + timedelta(minutes=minutes),
    }
    return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALG)

def get_current_user(db: Session = Depends(get_db), token: str = Depends(oauth2_scheme)) -> User:
    try:
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
        user_id = int(claims.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise CREDENTIALS_ERROR
    user = db.get(User, user_id)
    if user is None:
        raise CREDENTIALS_ERROR
    return user

def require_role(*roles: UserRole) -> Callable[..., User]:
    allowed = frozenset(roles)

    def operator_with_role(current: User = Depends(get_current_user)) -> User:
        if current.role not in allowed:
            raise HTTPException(403, f"Requires role: {', '.join(sorted(r.value for r in allowed))}")
        return current
    return operator_with_role
