import os
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from dotenv import load_dotenv
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from credentials import CredentialStore
from errors import MalformedToken, SessionExpired, UnknownSession

load_dotenv()

DEFAULT_SECRET_KEY = "change-this-in-production-minimum-32-chars!"
SECRET_KEY = os.getenv("SECRET_KEY", DEFAULT_SECRET_KEY)
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
TOKEN_TYPE = "Bearer"


@dataclass
class SessionToken:
    token: str
    token_type: str
    expires_at: datetime


class SessionIssuer:
    """
    Mints and validates signed bearer tokens (JWT). Embeds: sub (user id),
    iat, exp, jti, typ. Stateless: validation is a signature check plus one
    primary-key lookup to confirm the user is still live.
    """

    def __init__(self, credentials: CredentialStore, secret_key: str = None,
                 ttl_seconds: int = None, clock=time.time):
        self._credentials = credentials
        self._secret_key = secret_key or SECRET_KEY
        self._ttl = ttl_seconds if ttl_seconds is not None else ACCESS_TOKEN_EXPIRE_MINUTES * 60
        self._clock = clock

    def issue(self, user_id: int) -> SessionToken:
        issued_at = int(self._clock())
        expires = issued_at + self._ttl
        claims = {
            "sub": str(user_id),
            "iat": issued_at,
            "exp": expires,
            "jti": uuid.uuid4().hex,
            "typ": "session",
        }
        token = jwt.encode(claims, self._secret_key, algorithm=ALGORITHM)
        return SessionToken(
            token=token,
            token_type=TOKEN_TYPE,
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
        )

    def validate(self, db: Session, token: str) -> int:
        if not token:
            raise MalformedToken("empty token")
        try:
            # exp is checked below against our own clock
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM],
                                 options={"verify_exp": False})
        except JWTError as e:
            raise MalformedToken(f"undecodable token: {e}")

        if payload.get("typ") != "session":
            raise MalformedToken("not a session token")
        try:
            user_id = int(payload["sub"])
            expires = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise MalformedToken("missing or invalid claims")

        if self._clock() > expires:
            raise SessionExpired(f"token for user id={user_id} expired")

        if self._credentials.get_user(db, user_id) is None:
            raise UnknownSession(f"no live user with id={user_id}")
        return user_id
