"""
share_tokens.py — Share-Token Manager.

A share token is an opaque, server-stored credential bound to exactly one
file. It carries no user identity and only ever unlocks a download of that
file. Redemption does not consume the token: it stays valid for repeated
downloads until expires_at, or until the file is deleted.
"""
import logging
import os
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from dotenv import load_dotenv
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
from errors import InvalidToken, NotFound, ShareExpired, ValidationError
from file_registry import FileContent, FileRegistry

load_dotenv()

logger = logging.getLogger(__name__)

SHARE_TOKEN_TTL_DAYS = int(os.getenv("SHARE_TOKEN_TTL_DAYS", "1"))
SHARE_MAX_TTL_DAYS = int(os.getenv("SHARE_MAX_TTL_DAYS", "30"))

TOKEN_BYTES = 32  # 256 bits of entropy
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{43}$")


@dataclass(frozen=True)
class IssuedShare:
    token: str
    file_id: str
    created_at: datetime
    expires_at: datetime


def is_well_formed(token: str) -> bool:
    return bool(token) and _TOKEN_PATTERN.match(token) is not None


class ShareTokenManager:

    def __init__(self, registry: FileRegistry, default_ttl: timedelta = None,
                 max_ttl: timedelta = None, clock=models.utcnow):
        self._registry = registry
        self._default_ttl = default_ttl or timedelta(days=SHARE_TOKEN_TTL_DAYS)
        self._max_ttl = max_ttl or timedelta(days=SHARE_MAX_TTL_DAYS)
        self._clock = clock
        registry.on_delete(self.revoke_for_file)

    def create(self, db: Session, owner_id: int, file_id: str, ttl: timedelta = None) -> IssuedShare:
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise ValidationError("Share lifetime must be positive")
        if ttl > self._max_ttl:
            raise ValidationError(f"Share lifetime cannot exceed {self._max_ttl.days} days")

        # a delete of the same file cannot run between the check and the insert
        with self._registry.locked(file_id):
            # NotFound / Forbidden propagate unchanged
            self._registry.get_owned(db, owner_id, file_id)

            now = self._clock()
            share = models.ShareToken(
                token=secrets.token_urlsafe(TOKEN_BYTES),
                file_id=file_id,
                created_at=now,
                expires_at=now + ttl,
            )
            db.add(share)
            try:
                db.commit()
            except IntegrityError:
                # file row removed outside the registry (another process)
                db.rollback()
                raise NotFound(f"file {file_id} vanished before its share token was stored")
            except Exception:
                db.rollback()
                raise
        logger.info(f"Share token {share.token[:6]}… issued for file {file_id}, expires {share.expires_at.isoformat()}")
        return IssuedShare(token=share.token, file_id=file_id,
                           created_at=share.created_at, expires_at=share.expires_at)

    def redeem(self, db: Session, token: str) -> FileContent:
        if not is_well_formed(token):
            raise InvalidToken("malformed share token")

        share = db.get(models.ShareToken, token)
        if share is None:
            raise InvalidToken(f"unknown share token {token[:6]}…")

        # re-evaluated on every redemption; the sweep is only housekeeping
        if not self._clock() < share.expires_at:
            logger.info(f"Rejected expired share token {token[:6]}… for file {share.file_id}")
            raise ShareExpired(f"share token {token[:6]}… expired at {share.expires_at.isoformat()}")

        file_id = share.file_id
        try:
            return self._registry.fetch_by_anyone(db, file_id)
        except NotFound:
            # file deleted after the token lookup
            raise InvalidToken(f"file {file_id} behind share token no longer exists")

    def revoke_for_file(self, db: Session, file_id: str) -> int:
        """Deletion listener: removes every token of file_id inside the caller's transaction."""
        count = (
            db.query(models.ShareToken)
            .filter(models.ShareToken.file_id == file_id)
            .delete(synchronize_session=False)
        )
        if count:
            logger.info(f"Invalidated {count} share token(s) for deleted file {file_id}")
        return count

    def purge_expired(self, db: Session) -> int:
        count = (
            db.query(models.ShareToken)
            .filter(models.ShareToken.expires_at <= self._clock())
            .delete(synchronize_session=False)
        )
        db.commit()
        if count:
            logger.info(f"Purged {count} expired share token(s)")
        return count
