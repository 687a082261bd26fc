"""Password hashing and signed access tokens."""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

import config

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password, hashed_password):
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # unrecognized or empty hash
        return False


def get_password_hash(password):
    return pwd_context.hash(password)


def dummy_verify():
    """Spend the time of one real verification when there is no hash to check."""
    pwd_context.dummy_verify()


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
    now: Optional[datetime] = None,
    secret_key: str = config.SECRET_KEY,
    algorithm: str = config.ALGORITHM,
) -> str:
    to_encode = data.copy()
    issued = now or datetime.now(timezone.utc)
    expire = issued + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"iat": int(issued.timestamp()), "exp": int(expire.timestamp())})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def decode_access_token(
    token: str,
    now: Optional[datetime] = None,
    secret_key: str = config.SECRET_KEY,
    algorithm: str = config.ALGORITHM,
) -> Optional[dict]:
    """Return the claims of a valid token, or None. Never raises."""
    if not token or not isinstance(token, str):
        return None
    try:
        # expiry is checked below against the caller's clock
        payload = jwt.decode(token, secret_key, algorithms=[algorithm], options={"verify_exp": False})
    except JWTError:
        return None
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    current = now or datetime.now(timezone.utc)
    if current.timestamp() >= exp:
        return None
    return payload


def read_token_expiry(token: str) -> Optional[datetime]:
    """Expiry embedded in a token, read without checking the signature."""
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)
