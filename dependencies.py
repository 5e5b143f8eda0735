from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from database import session_scope
from errors import MalformedToken
from services import VaultServices

# Only the "Bearer" scheme is accepted; a bare token reads as missing.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


def get_services(request: Request) -> VaultServices:
    return request.app.state.services


def get_db(services: VaultServices = Depends(get_services)):
    """Dependency — yields a DB session and always closes it after the request."""
    yield from session_scope(services.session_factory)


def get_current_user_id(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    services: VaultServices = Depends(get_services),
) -> int:
    if not token:
        raise MalformedToken("missing bearer token")
    return services.sessions.validate(db, token)


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
