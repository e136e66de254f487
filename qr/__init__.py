"""
Veridity qr
===========

Signed, encrypted, single-use tokens for QR codes and deep links, and the
redemption flow that verifies the proofs they carry.
"""

from .redeem import ProofRedeemer, RedemptionOutcome
from .schema import (ERROR_MESSAGES, IssuedToken, SecureTokenPayload,
                     TokenErrorCode, TokenRequest, TokenType,
                     VerificationOutcome)
from .service import SecureTokenService, build_token_service

__all__ = [
    "ERROR_MESSAGES",
    "IssuedToken",
    "SecureTokenPayload",
    "TokenErrorCode",
    "TokenRequest",
    "TokenType",
    "VerificationOutcome",
    "SecureTokenService",
    "build_token_service",
    "ProofRedeemer",
    "RedemptionOutcome",
]
