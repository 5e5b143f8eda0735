import os
import re
import bcrypt
from dotenv import load_dotenv

from errors import WeakPassword

load_dotenv()

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MIN_PASSWORD_LENGTH = int(os.getenv("MIN_PASSWORD_LENGTH", "3"))
REQUIRE_COMPLEX_PASSWORDS = os.getenv("REQUIRE_COMPLEX_PASSWORDS", "false").lower() == "true"

# bcrypt only looks at the first 72 bytes; longer secrets are rejected outright
MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int = None) -> str:
    """Hash password with bcrypt (salted, one-way)."""
    salt = bcrypt.gensalt(rounds=rounds or BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Verify plain password against bcrypt hash. Returns False for unusable input."""
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def validate_password_strength(password: str, min_length: int = None, require_complex: bool = None) -> tuple[bool, str]:
    min_length = MIN_PASSWORD_LENGTH if min_length is None else min_length
    require_complex = REQUIRE_COMPLEX_PASSWORDS if require_complex is None else require_complex

    if len(password) < min_length:
        return False, f"Password must be at least {min_length} characters"
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return False, f"Password must be at most {MAX_PASSWORD_BYTES} bytes"
    if require_complex:
        if not re.search(r'[A-Z]', password):
            return False, "Password must contain at least one uppercase letter"
        if not re.search(r'[a-z]', password):
            return False, "Password must contain at least one lowercase letter"
        if not re.search(r'\d', password):
            return False, "Password must contain at least one number"
    return True, ""


def enforce_password_policy(password: str, min_length: int = None, require_complex: bool = None):
    ok, reason = validate_password_strength(password, min_length, require_complex)
    if not ok:
        raise WeakPassword(reason)
