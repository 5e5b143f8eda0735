import hashlib
import logging
import threading
import uuid

from sqlalchemy.orm import Session

import models

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64
ANONYMOUS = "anonymous"

# read-last-then-append must not interleave within one process
_chain_lock = threading.Lock()


def actor(user_id: int) -> str:
    return f"user:{user_id}"


def entry_hash(entry_id, timestamp, user, action, file_id, meta_data, ip_address, previous_hash) -> str:
    """SHA-256 over the persisted fields of an entry, so any stored row can be re-hashed."""
    record = "|".join([
        entry_id,
        timestamp.isoformat(),
        user or "",
        action or "",
        file_id or "",
        meta_data or "",
        ip_address or "",
        previous_hash,
    ])
    return hashlib.sha256(record.encode()).hexdigest()


def create_audit_entry(
    db: Session,
    action: str,
    user: str = "system",
    file_id: str = None,
    meta_data: str = None,
    ip_address: str = None,
):
    with _chain_lock:
        # Read last hash from DB, no in-memory global (which resets on restart)
        last_log = db.query(models.AuditLog).order_by(models.AuditLog.id.desc()).first()
        previous_hash = last_log.current_hash if last_log else GENESIS_HASH

        entry_id = uuid.uuid4().hex[:12]
        # whole seconds: the value must survive a round trip through any DateTime column
        timestamp = models.utcnow().replace(microsecond=0)
        current_hash = entry_hash(entry_id, timestamp, user, action, file_id, meta_data, ip_address,
                                  previous_hash)

        log = models.AuditLog(
            entry_id=entry_id,
            timestamp=timestamp,
            user=user,
            action=action,
            file_id=file_id,
            meta_data=meta_data,
            ip_address=ip_address,
            previous_hash=previous_hash,
            current_hash=current_hash,
        )
        db.add(log)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
    logger.info(f"AUDIT {action} user={user} file={file_id or '-'} ip={ip_address or '-'}")
    return current_hash


def list_entries(db: Session, user: str, limit: int = 100):
    return (
        db.query(models.AuditLog)
        .filter(models.AuditLog.user == user)
        .order_by(models.AuditLog.id.desc())
        .limit(limit)
        .all()
    )


def verify_audit_chain(db: Session) -> dict:
    logs = db.query(models.AuditLog).order_by(models.AuditLog.id.asc()).all()
    if not logs:
        return {"valid": True, "entries_checked": 0, "message": "No logs to verify"}

    prev = GENESIS_HASH
    for log in logs:
        recomputed = entry_hash(log.entry_id, log.timestamp, log.user, log.action, log.file_id,
                                log.meta_data, log.ip_address, log.previous_hash)
        if log.previous_hash != prev or log.current_hash != recomputed:
            logger.error(f"Audit chain broken at entry id={log.id}")
            return {
                "valid": False,
                "entries_checked": len(logs),
                "broken_at_entry_id": log.id,
                "message": "Chain integrity violation detected",
            }
        prev = log.current_hash

    return {
        "valid": True,
        "entries_checked": len(logs),
        "message": "Audit chain integrity verified",
    }
