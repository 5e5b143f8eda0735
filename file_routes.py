import os
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

import models
import schemas
from audit import actor, create_audit_entry
from dependencies import get_client_ip, get_current_user_id, get_db, get_services
from errors import PayloadTooLarge
from file_registry import FileContent
from services import VaultServices

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(100 * 1024 * 1024)))

router = APIRouter(prefix="/files", tags=["Files"])


def content_disposition(filename: str) -> str:
    ascii_name = "".join(c if 0x20 <= ord(c) <= 0x7E and c not in '"\\' else "_" for c in filename)
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename, safe='')}"


def download_response(content: FileContent) -> Response:
    return Response(
        content=content.data,
        media_type=content.content_type or "application/octet-stream",
        headers={"Content-Disposition": content_disposition(content.filename)},
    )


def file_out(record: models.File) -> dict:
    return {
        "id": record.id,
        "name": record.filename,
        "filePath": record.storage_key,
        "type": record.mime_type,
        "size": record.size,
        "uploadDate": record.created_at,
    }


@router.get("/list", response_model=schemas.FileList)
def list_files(db: Session = Depends(get_db),
               user_id: int = Depends(get_current_user_id),
               services: VaultServices = Depends(get_services)):
    return [file_out(f) for f in services.registry.list(db, user_id)]


@router.post("/upload", response_model=schemas.FileOut, status_code=status.HTTP_201_CREATED)
def upload_file(request: Request,
                file: UploadFile = File(...),
                db: Session = Depends(get_db),
                user_id: int = Depends(get_current_user_id),
                services: VaultServices = Depends(get_services)):
    content = file.file.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise PayloadTooLarge(f"upload exceeds {MAX_UPLOAD_BYTES} bytes")

    record = services.registry.store(db, user_id, file.filename, content, file.content_type)
    create_audit_entry(db, "FILE_UPLOADED", user=actor(user_id), file_id=record.id,
                       ip_address=get_client_ip(request), meta_data=f"size={record.size}")
    return file_out(record)


@router.get("/download/{path}")
def download_file(path: str, request: Request,
                  db: Session = Depends(get_db),
                  user_id: int = Depends(get_current_user_id),
                  services: VaultServices = Depends(get_services)):
    content = services.registry.fetch(db, user_id, path)
    create_audit_entry(db, "FILE_DOWNLOADED", user=actor(user_id), file_id=content.file_id,
                       ip_address=get_client_ip(request))
    return download_response(content)


@router.delete("/delete/{file_id}", response_model=schemas.MessageResponse)
def delete_file(file_id: str, request: Request,
                db: Session = Depends(get_db),
                user_id: int = Depends(get_current_user_id),
                services: VaultServices = Depends(get_services)):
    services.registry.delete(db, user_id, file_id)
    create_audit_entry(db, "FILE_DELETED", user=actor(user_id), file_id=file_id,
                       ip_address=get_client_ip(request))
    return {"message": "File deleted successfully"}
