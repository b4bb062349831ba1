"""
Test-identity exceptions
"""

from enum import Enum


class AuthError(Exception):
    """Base exception for test-identity operations"""

    pass


class KeyGenError(AuthError):
    """Signing key could not be generated, loaded or persisted"""

    pass


class SignError(AuthError):
    """Claims could not be serialized or signed"""

    pass


class TokenErrorReason(str, Enum):
    """Why a token was rejected."""

    MALFORMED = "malformed"
    ALGORITHM = "algorithm"
    SIGNATURE = "signature"
    EXPIRED = "expired"
    AUDIENCE = "audience"


class TokenValidationError(AuthError):
    """Token was rejected by the issuer"""

    def __init__(self, reason: TokenErrorReason, message: str):
        self.reason = reason
        super().__init__(f"{reason.value}: {message}")
