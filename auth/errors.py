"""
auth/errors.py -- Exception taxonomy for authentication and authorization.

Every error carries a machine-readable `code` and the HTTP `status_code` the
API layer maps it to. The api/main.py exception handler renders them in the
standard {"error": {"code", "message"}} envelope.

Verification-path errors are client faults (400/401), never 500: they describe
untrusted input, not server failures. Messages are safe to return to clients
-- they never include nonces, signatures, account ids, or cache state.

Layer rule: no imports from api/, audit/, or cache/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all auth errors."""

    code: str = "auth_error"
    status_code: int = 401
    message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Challenge / verification
# ---------------------------------------------------------------------------


class NoNonceError(AuthError):
    """No challenge in progress for this session."""

    code = "no_nonce"
    message = "No nonce found in session. Request a new challenge first."


class NonceMismatchError(AuthError):
    code = "nonce_mismatch"
    message = "Nonce mismatch."


class DomainMismatchError(AuthError):
    code = "domain_mismatch"
    message = "Domain mismatch."


class UriMismatchError(AuthError):
    code = "uri_mismatch"
    message = "URI mismatch."


class MalformedMessageError(AuthError):
    code = "malformed_message"
    status_code = 400
    message = "Message could not be parsed."


class InvalidAddressError(AuthError):
    code = "invalid_address"
    status_code = 400
    message = "Invalid wallet address."


class SignatureInvalidError(AuthError):
    code = "invalid_signature"
    message = "Signature verification failed."


class MessageExpiredError(AuthError):
    code = "message_expired"
    message = "Message is expired or not yet valid."


class FarcasterIdentityError(AuthError):
    """Signer is neither the custody address nor an auth address of the fid."""

    code = "farcaster_identity"
    message = "Signer is not authorized for this Farcaster ID."


# ---------------------------------------------------------------------------
# Session / authorization
# ---------------------------------------------------------------------------


class NotAuthenticatedError(AuthError):
    code = "unauthorized"
    message = "Authentication required."


class InsufficientRoleError(AuthError):
    code = "forbidden"
    status_code = 403
    message = "Admin access required."


class InsufficientPermissionError(AuthError):
    code = "missing_permission"
    status_code = 403

    def __init__(self, permission: str) -> None:
        self.permission = permission
        super().__init__(f"Permission required: {permission}")


# ---------------------------------------------------------------------------
# Grants / accounts
# ---------------------------------------------------------------------------


class GranterNotFoundError(AuthError):
    """Grant or revoke attempted by a session with no account row."""

    code = "granter_not_found"
    status_code = 400
    message = "Granter account not found."


class AccountNotFoundError(AuthError):
    code = "not_found"
    status_code = 404
    message = "Account not found."
