import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

import schemas
from audit import ANONYMOUS, actor, create_audit_entry
from credentials import normalize_email
from dependencies import get_client_ip, get_db, get_services
from errors import InvalidCredentials
from services import VaultServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/register", response_model=schemas.RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(user: schemas.UserCreate, request: Request,
             db: Session = Depends(get_db),
             services: VaultServices = Depends(get_services)):
    user_id = services.credentials.register(db, user.email, user.password)
    create_audit_entry(db, "USER_REGISTERED", user=actor(user_id), ip_address=get_client_ip(request))
    return {"message": "User registered successfully", "id": user_id}


@router.post("/login", response_model=schemas.Token)
def login(user: schemas.UserLogin, request: Request,
          db: Session = Depends(get_db),
          services: VaultServices = Depends(get_services)):
    try:
        user_id = services.credentials.verify(db, user.email, user.password)
    except InvalidCredentials:
        logger.warning(f"Failed login for {normalize_email(user.email)} from {get_client_ip(request)}")
        create_audit_entry(db, "LOGIN_FAILED", user=ANONYMOUS, ip_address=get_client_ip(request),
                           meta_data=f"email={normalize_email(user.email)}")
        raise

    session = services.sessions.issue(user_id)
    create_audit_entry(db, "USER_LOGIN", user=actor(user_id), ip_address=get_client_ip(request))
    return {"token": session.token, "tokenType": session.token_type, "expiresAt": session.expires_at}
