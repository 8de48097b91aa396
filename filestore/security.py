from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from filestore.errors import Unauthenticated

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"  # noqa: S105


def hash_password(password: str, rounds: int = 12) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class AccessTokenService:
    def __init__(self, secret_key: str, ttl: timedelta):
        self.secret_key = secret_key
        self.ttl = ttl

    def issue_access_token(self, subject: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": subject,
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.ttl,
        }
        return jwt.encode(payload, self.secret_key, algorithm=ALGORITHM)

    def decode_subject(self, token: str) -> str:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError as exc:
            raise Unauthenticated("access token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise Unauthenticated("invalid access token") from exc
        if payload.get("type") != ACCESS_TOKEN_TYPE or not payload.get("sub"):
            raise Unauthenticated("invalid access token")
        return payload["sub"]
