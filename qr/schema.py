from __future__ import annotations

"""
Secure token models

- SecureTokenPayload: the signed, encrypted document a QR code carries.
- TokenRequest: what a relying party asks for when generating a token.
- IssuedToken / VerificationOutcome: results handed back to the API layer.

Notes
-----
* Wire names are camelCase (``expiresAt``, ``sharedProofId``); Python
  attributes are snake_case. Both are accepted on input.
* ``payload`` is a tagged union keyed by the top-level ``type``; a payload that
  does not fit its type's model is a format error.
* Embedded proofs name their claim through `zk.claims.ClaimType`, so an
  unsupported claim never reaches the verifier.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import (BaseModel, ConfigDict, Field, ValidationError,
                      field_validator, model_validator)
from pydantic.alias_generators import to_camel

from zk.claims import ClaimType

CURRENT_VERSION = "1.0"

_URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)


class TokenType(str, Enum):
    PROOF_VERIFICATION = "proof_verification"
    IDENTITY_SHARE = "identity_share"
    LOGIN_REQUEST = "login_request"


class TokenErrorCode(str, Enum):
    INVALID_FORMAT = "INVALID_FORMAT"
    EXPIRED = "EXPIRED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    REPLAY_ATTACK = "REPLAY_ATTACK"
    UNSUPPORTED_VERSION = "UNSUPPORTED_VERSION"


ERROR_MESSAGES: Dict[TokenErrorCode, str] = {
    TokenErrorCode.INVALID_FORMAT: "This QR code is not a valid Veridity verification request.",
    TokenErrorCode.EXPIRED: "This QR code has expired. Please request a new one.",
    TokenErrorCode.INVALID_SIGNATURE: "This QR code appears to have been tampered with.",
    TokenErrorCode.REPLAY_ATTACK: "This QR code has already been used.",
    TokenErrorCode.UNSUPPORTED_VERSION: "This QR code uses an unsupported format version.",
}


def _check_url(v: Optional[str]) -> Optional[str]:
    if v is not None and not _URL_RE.match(v):
        raise ValueError("must be an http(s) URL")
    return v


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ------------------------------ PARTS ------------------------------


class IssuerInfo(_Model):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    domain: Optional[str] = None

    @field_validator("domain")
    @classmethod
    def _domain(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)


class TokenMetadata(_Model):
    timestamp: int = Field(..., gt=0, description="Issue time, ms since epoch.")
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


class EmbeddedProof(_Model):
    claim_type: ClaimType
    proof: Dict[str, Any]
    public_signals: List[str] = Field(..., min_length=1)

    @field_validator("public_signals", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [str(x) if isinstance(x, int) and not isinstance(x, bool) else x for x in v]
        return v


# ------------------------------ PAYLOADS ------------------------------


class ProofVerificationPayload(_Model):
    proof_types: Optional[List[str]] = None
    required_fields: Optional[List[str]] = None
    proofs: Optional[List[EmbeddedProof]] = None


class IdentitySharePayload(_Model):
    shared_proof_id: str = Field(..., min_length=1)
    proofs: Optional[List[EmbeddedProof]] = None


class LoginRequestPayload(_Model):
    session_id: str = Field(..., min_length=1)
    redirect_url: Optional[str] = None

    @field_validator("redirect_url")
    @classmethod
    def _redirect(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)


TokenBody = Union[ProofVerificationPayload, IdentitySharePayload, LoginRequestPayload]

PAYLOAD_MODELS: Dict[TokenType, Type[_Model]] = {
    TokenType.PROOF_VERIFICATION: ProofVerificationPayload,
    TokenType.IDENTITY_SHARE: IdentitySharePayload,
    TokenType.LOGIN_REQUEST: LoginRequestPayload,
}


def _bind_payload(data: Any) -> Any:
    """Validate ``payload`` against the model selected by ``type``."""
    if not isinstance(data, dict):
        return data
    try:
        kind = TokenType(data.get("type"))
    except ValueError:
        return data
    body = data.get("payload")
    if isinstance(body, dict):
        data = dict(data)
        try:
            data["payload"] = PAYLOAD_MODELS[kind].model_validate(body)
        except ValidationError as e:
            raise ValueError(f"invalid {kind.value} payload: {e.error_count()} error(s)") from None
    return data


def _payload_matches(kind: TokenType, body: TokenBody) -> None:
    if not isinstance(body, PAYLOAD_MODELS[kind]):
        raise ValueError(f"payload does not match token type {kind.value}")


# ------------------------------ TOKEN ------------------------------


class SecureTokenPayload(_Model):
    version: str
    type: TokenType
    nonce: str = Field(..., pattern=r"^[0-9a-f]{64,}$")
    expires_at: int = Field(..., gt=0, description="Expiry, ms since epoch.")
    issuer: IssuerInfo
    payload: TokenBody
    signature: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    metadata: Optional[TokenMetadata] = None

    @model_validator(mode="before")
    @classmethod
    def _bind(cls, data: Any) -> Any:
        return _bind_payload(data)

    @model_validator(mode="after")
    def _check_union(self) -> "SecureTokenPayload":
        _payload_matches(self.type, self.payload)
        return self

    def proofs(self) -> List[EmbeddedProof]:
        return list(getattr(self.payload, "proofs", None) or [])


class IssuerOverride(_Model):
    name: str = Field(..., min_length=1)
    domain: Optional[str] = None

    @field_validator("domain")
    @classmethod
    def _domain(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)


class TokenRequest(_Model):
    type: TokenType
    expiry_minutes: int = Field(15, ge=1, le=1440)
    payload: TokenBody
    issuer: Optional[IssuerOverride] = None

    @model_validator(mode="before")
    @classmethod
    def _bind(cls, data: Any) -> Any:
        return _bind_payload(data)

    @model_validator(mode="after")
    def _check_union(self) -> "TokenRequest":
        _payload_matches(self.type, self.payload)
        return self


# ------------------------------ RESULTS ------------------------------


@dataclass(frozen=True)
class IssuedToken:
    token: str
    checksum: str
    deep_link_url: str
    qr_code_url: str
    expires_at: int
    nonce: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "checksum": self.checksum,
            "deepLinkUrl": self.deep_link_url,
            "qrCodeUrl": self.qr_code_url,
            "expiresAt": self.expires_at,
        }


@dataclass(frozen=True)
class VerificationOutcome:
    success: bool
    verified_at: int
    time_to_expiry_seconds: int = 0
    issuer_verified: bool = False
    nonce_checked: bool = False
    error_code: Optional[TokenErrorCode] = None
    payload: Optional[SecureTokenPayload] = None

    @property
    def message(self) -> Optional[str]:
        return ERROR_MESSAGES[self.error_code] if self.error_code else None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "metadata": {
                "verifiedAt": self.verified_at,
                "timeToExpiry": self.time_to_expiry_seconds,
                "issuerVerified": self.issuer_verified,
                "nonceChecked": self.nonce_checked,
            },
        }
        if self.payload is not None:
            out["payload"] = self.payload.to_wire()
        if self.error_code is not None:
            out["error"] = {"code": self.error_code.value, "message": self.message}
        return out


__all__ = [
    "CURRENT_VERSION",
    "TokenType",
    "TokenErrorCode",
    "ERROR_MESSAGES",
    "IssuerInfo",
    "TokenMetadata",
    "EmbeddedProof",
    "ProofVerificationPayload",
    "IdentitySharePayload",
    "LoginRequestPayload",
    "PAYLOAD_MODELS",
    "SecureTokenPayload",
    "IssuerOverride",
    "TokenRequest",
    "IssuedToken",
    "VerificationOutcome",
]
