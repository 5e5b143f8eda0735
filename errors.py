"""
errors.py — Typed error taxonomy for FileVault.

Components raise these; the gateway turns each one into a stable status code
and a wire body of {"code": ..., "message": ...}. The message is for display
only and never says more than the code does.
"""


class VaultError(Exception):
    code = "internal_error"
    status_code = 500
    message = "Internal server error"

    def __init__(self, detail: str = None):
        # detail is for logs; the public message stays fixed per class
        self.detail = detail or self.message
        super().__init__(self.detail)


# ─── Credentials ──────────────────────────────────────────────────────────────

class InvalidCredentials(VaultError):
    code = "invalid_credentials"
    status_code = 401
    message = "Invalid credentials"


class EmailTaken(VaultError):
    code = "email_taken"
    status_code = 409
    message = "Email already registered"


class WeakPassword(VaultError):
    code = "weak_password"
    status_code = 400
    message = "Password does not meet the password policy"

    def __init__(self, detail: str = None):
        super().__init__(detail)
        # policy text is safe to show, it says nothing about other accounts
        if detail:
            self.message = detail


# ─── Sessions ─────────────────────────────────────────────────────────────────

class Unauthenticated(VaultError):
    code = "unauthenticated"
    status_code = 401
    message = "Invalid or expired token"


class SessionExpired(Unauthenticated):
    pass


class MalformedToken(Unauthenticated):
    pass


class UnknownSession(Unauthenticated):
    pass


# ─── Files ────────────────────────────────────────────────────────────────────

class NotFound(VaultError):
    code = "not_found"
    status_code = 404
    message = "File not found"


class Forbidden(VaultError):
    # Collapsed into not_found on the wire so ownership cannot be probed.
    code = "not_found"
    status_code = 404
    message = "File not found"


class StorageUnavailable(VaultError):
    code = "storage_unavailable"
    status_code = 503
    message = "Storage temporarily unavailable"


class PayloadTooLarge(VaultError):
    code = "payload_too_large"
    status_code = 413
    message = "File too large"


class ValidationError(VaultError):
    code = "validation_error"
    status_code = 422
    message = "Malformed request"

    def __init__(self, detail: str = None):
        super().__init__(detail)
        if detail:
            self.message = detail


# ─── Share tokens ─────────────────────────────────────────────────────────────

class InvalidToken(VaultError):
    code = "invalid_share_token"
    status_code = 404
    message = "Invalid or expired share token"


class ShareExpired(InvalidToken):
    pass
