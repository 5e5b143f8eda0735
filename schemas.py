from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import List, Optional
from datetime import datetime


class UserCreate(BaseModel):
    email: EmailStr
    password: str


class UserLogin(BaseModel):
    # plain str so a malformed email fails as invalid_credentials, not as a probe-able 422
    email: str
    password: str


class RegisterResponse(BaseModel):
    message: str
    id: int


class Token(BaseModel):
    token: str
    tokenType: str
    expiresAt: datetime


class FileOut(BaseModel):
    id: str
    name: str
    filePath: str
    type: Optional[str]
    size: int
    uploadDate: datetime


class ShareCreateRequest(BaseModel):
    fileId: str = Field(..., min_length=1)
    expiresInDays: int = Field(1, ge=1)


class ShareCreateResponse(BaseModel):
    token: str
    expiresAt: datetime


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    code: str
    message: str


class AuditEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    user: str
    file_id: Optional[str]
    timestamp: datetime
    ip_address: Optional[str]
    current_hash: str


class AuditChainReport(BaseModel):
    valid: bool
    entries_checked: int
    message: str
    broken_at_entry_id: Optional[int] = None


class HealthOut(BaseModel):
    status: str
    service: str
    version: str
    storage: dict


FileList = List[FileOut]
