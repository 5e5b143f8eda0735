# share_routes.py

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

import schemas
from audit import ANONYMOUS, actor, create_audit_entry
from dependencies import get_client_ip, get_current_user_id, get_db, get_services
from file_routes import download_response
from services import VaultServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/share", tags=["Secure Sharing"])


# ─── CREATE SHARE ─────────────────────────────────────

@router.post("/shared-files/create", response_model=schemas.ShareCreateResponse)
def create_share(
    req: schemas.ShareCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    services: VaultServices = Depends(get_services),
):
    share = services.shares.create(db, user_id, req.fileId, ttl=timedelta(days=req.expiresInDays))
    create_audit_entry(db, "SHARE_CREATED", user=actor(user_id), file_id=share.file_id,
                       ip_address=get_client_ip(request),
                       meta_data=f"expires_at={share.expires_at.isoformat()}")
    return {"token": share.token, "expiresAt": share.expires_at}


# ─── DOWNLOAD ─────────────────────────────────────────
# The share token in the path is the only credential; Authorization is never read here.

@router.get("/download/shared/{token}")
def download_shared_file(
    token: str,
    request: Request,
    db: Session = Depends(get_db),
    services: VaultServices = Depends(get_services),
):
    content = services.shares.redeem(db, token)
    logger.info(f"Anonymous share download of file {content.file_id} via token {token[:6]}…")
    create_audit_entry(db, "SHARE_REDEEMED", user=ANONYMOUS, file_id=content.file_id,
                       ip_address=get_client_ip(request))
    return download_response(content)
