from passlib.context import CryptContext
import jwt
from datetime import datetime, timedelta, timezone
from sqlalchemy.orm import Session
from typing import Optional
import logging
import secrets
import os

logger = logging.getLogger(__name__)

# bcrypt is preferred, fall back to pbkdf2 where the installed bcrypt is unusable
try:
    pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
    pwd_context.hash("test")
except Exception as e:
    logger.warning(f"bcrypt unavailable ({e}), using pbkdf2_sha256")
    pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def get_secret_key():
    env_key = os.getenv("SECRET_KEY")
    if env_key:
        return env_key

    key_file = ".secret_key"
    if os.path.exists(key_file):
        try:
            with open(key_file, "r", encoding='utf-8') as f:
                return f.read().strip()
        except UnicodeDecodeError:
            logger.warning("Secret key file is unreadable, generating a new one")
            os.remove(key_file)

    new_key = secrets.token_urlsafe(32)
    with open(key_file, "w", encoding='utf-8') as f:
        f.write(new_key)
    if os.name != 'nt':
        os.chmod(key_file, 0o600)
    logger.info("Generated a new SECRET_KEY")
    return new_key


SECRET_KEY = get_secret_key()
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
OWNER_ROLES = ("owner", "admin")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def authenticate_owner(db: Session, username: str, password: str):
    from models import User
    user = db.query(User).filter(User.username == username).first()
    if not user or not verify_password(password, user.password):
        logger.info(f"Failed login for {username!r}")
        return None
    if pwd_context.needs_update(user.password):
        # hashes made by the pbkdf2 fallback get upgraded once bcrypt works
        user.password = get_password_hash(password)
        db.commit()
    return user


def create_access_token(owner_id: int, role: str):
    expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {"sub": str(owner_id), "role": role, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str):
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], options={"require": ["exp", "sub"]})
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except jwt.InvalidTokenError:
        return None


def owner_id_from_header(authorization: Optional[str]) -> Optional[int]:
    """Owner id from an ``Authorization: Bearer <token>`` header, None if absent or bad."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    payload = verify_token(authorization[len("Bearer "):])
    if not payload or payload.get("role") not in OWNER_ROLES:
        return None
    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        return None
