"""
credentials.py — Credential Store: user identities and their password hashes.

Uniqueness of the email is the database's job (UNIQUE constraint on
users.email); a losing concurrent insert surfaces as EmailTaken, never as a
raw IntegrityError.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
from errors import EmailTaken, InvalidCredentials, ValidationError
from security import enforce_password_policy, hash_password, verify_password

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class CredentialStore:

    def __init__(self, bcrypt_rounds: int = None, min_password_length: int = None,
                 require_complex_passwords: bool = None):
        self._rounds = bcrypt_rounds
        self._min_length = min_password_length
        self._require_complex = require_complex_passwords
        # Checked when the email is unknown so both failure paths cost one bcrypt verify.
        self._dummy_hash = hash_password("filevault-timing-equalizer", rounds=bcrypt_rounds)

    def register(self, db: Session, email: str, raw_password: str) -> int:
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")
        enforce_password_policy(raw_password, self._min_length, self._require_complex)

        user = models.User(email=email, password_hash=hash_password(raw_password, rounds=self._rounds))
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Registration rejected, email already taken: {email}")
            raise EmailTaken(f"email {email} already registered")

        logger.info(f"User registered: id={user.id}")
        return user.id

    def verify(self, db: Session, email: str, raw_password: str) -> int:
        user = db.query(models.User).filter(models.User.email == normalize_email(email)).first()
        if user is None:
            verify_password(raw_password, self._dummy_hash)
            raise InvalidCredentials("unknown email")
        if not verify_password(raw_password, user.password_hash):
            raise InvalidCredentials(f"wrong password for user id={user.id}")
        return user.id

    def get_user(self, db: Session, user_id: int):
        return db.get(models.User, user_id)
