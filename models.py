from sqlalchemy import Column, Integer, String, DateTime, BigInteger, Text, ForeignKey
from sqlalchemy.orm import relationship
from database import Base
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now; all timestamps are stored naive-UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ─────────────────────────────────────────────────────────────
# User Model
# ─────────────────────────────────────────────────────────────
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), unique=True, nullable=False, index=True)  # stored lower-cased
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    files = relationship("File", back_populates="owner")


# ─────────────────────────────────────────────────────────────
# File Model
# ─────────────────────────────────────────────────────────────
class File(Base):
    __tablename__ = "files"

    # pk orders files by creation; id is the opaque public identifier
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    filename = Column(String, nullable=False)
    storage_key = Column(String, unique=True, nullable=False)
    size = Column(BigInteger, nullable=False)
    mime_type = Column(String, nullable=False, default="application/octet-stream")
    checksum_sha256 = Column(String(64), nullable=False)
    encryption_key = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    owner = relationship("User", back_populates="files")


# ─────────────────────────────────────────────────────────────
# Share Tokens (anonymous, single-file, time-limited)
# ─────────────────────────────────────────────────────────────
class ShareToken(Base):
    __tablename__ = "share_tokens"

    token = Column(String(64), primary_key=True)
    file_id = Column(String(32), ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)


# ─────────────────────────────────────────────────────────────
# Audit Log
# ─────────────────────────────────────────────────────────────
class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    entry_id = Column(String, unique=True, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    user = Column(String, index=True)
    action = Column(String)
    file_id = Column(String, nullable=True)
    meta_data = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    previous_hash = Column(String(64), nullable=False)
    current_hash = Column(String(64), unique=True, nullable=False)
