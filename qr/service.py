"""
Secure token service
====================

Issues and verifies the opaque tokens carried by Veridity QR codes.

Generation::

    BuildPayload -> Sign -> Encrypt -> ComputeChecksum -> Emit

Verification runs a fixed sequence of checks and stops at the first failure:

    1. checksum pre-filter (only when a checksum is supplied)   INVALID_FORMAT
    2. base64 + AES-256-GCM decryption                          INVALID_FORMAT
    3. schema validation                                        INVALID_FORMAT
    4. protocol version                                         UNSUPPORTED_VERSION
    5. expiry (``expiresAt <= now``)                            EXPIRED
    6. HMAC signature, constant-time compare                    INVALID_SIGNATURE
    7. atomic nonce claim on the ledger                         REPLAY_ATTACK
    8. accepted

A nonce is only ever claimed for a token whose signature verified, so a forged
token cannot burn someone else's nonce. An expired token reports ``EXPIRED``
whatever its signature. If the ledger cannot be reached the token is rejected
as a replay: acceptance without the single-use guarantee is never allowed.

`verify` never raises; every result is a `VerificationOutcome`.
"""

from __future__ import annotations

import os
import secrets
import time
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from core.errors import InvalidInput, LedgerUnavailable
from core.logging import get_logger
from replay.ledger import NonceLedger, open_ledger

from .codec import (TokenCipher, TokenFormatError, checksum, checksum_matches,
                    deep_link, sign_payload, verify_signature)
from .schema import (IssuerInfo, IssuedToken, SecureTokenPayload, TokenErrorCode,
                     TokenMetadata, TokenRequest, VerificationOutcome)

log = get_logger(__name__)

NONCE_KEY_PREFIX = "nonce:"


class SecureTokenService:
    def __init__(
        self,
        settings,
        ledger: NonceLedger,
        *,
        clock: Callable[[], float] = time.time,
        rng: Callable[[int], bytes] = secrets.token_bytes,
        iv_source: Callable[[int], bytes] = os.urandom,
    ) -> None:
        """
        settings: `core.config.TokenSettings`
        ledger:   shared nonce ledger; the same instance (or database file) must
                  back every verifier that can see the same tokens.
        """
        self.settings = settings
        self.ledger = ledger
        self._signing_key = settings.signing_secret.get_secret_value().encode("utf-8")
        self._cipher = TokenCipher(settings.encryption_secret.get_secret_value().encode("utf-8"), iv_source=iv_source)
        self._clock = clock
        self._rng = rng

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def new_nonce(self) -> str:
        return self._rng(self.settings.nonce_bytes).hex()

    # Generation ---------------------------------------------------------------

    def generate(
        self,
        request: Union[TokenRequest, Mapping[str, Any]],
        issuer_id: str,
        issuer_name: str,
        *,
        domain: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> IssuedToken:
        try:
            req = request if isinstance(request, TokenRequest) else TokenRequest.model_validate(request)
            issuer = IssuerInfo(
                id=issuer_id,
                name=req.issuer.name if req.issuer else issuer_name,
                domain=(req.issuer.domain if req.issuer and req.issuer.domain else domain),
            )
            now = self._now_ms()
            meta = TokenMetadata.model_validate({**dict(metadata or {}), "timestamp": now})
        except ValidationError as e:
            raise InvalidInput("invalid token request", errors=e.errors(include_url=False)) from None

        s = self.settings
        if not (s.min_expiry_minutes <= req.expiry_minutes <= s.max_expiry_minutes):
            raise InvalidInput(
                "expiryMinutes outside the allowed window",
                expiry_minutes=req.expiry_minutes,
                min=s.min_expiry_minutes,
                max=s.max_expiry_minutes,
            )

        nonce = self.new_nonce()
        expires_at = now + req.expiry_minutes * 60_000
        doc = {
            "version": s.current_version,
            "type": req.type.value,
            "nonce": nonce,
            "expiresAt": expires_at,
            "issuer": issuer.to_wire(),
            "payload": req.payload.to_wire(),
            "metadata": meta.to_wire(),
        }
        doc["signature"] = sign_payload(doc, self._signing_key)

        token = self._cipher.seal(doc)
        check = checksum(token)
        link = deep_link(s.deep_link_base, token, check)
        log.info("qr.token.issued", type=req.type.value, issuer_id=issuer_id, expires_at=expires_at)
        return IssuedToken(
            token=token,
            checksum=check,
            deep_link_url=link,
            qr_code_url=s.frontend_url.rstrip("/") + link,
            expires_at=expires_at,
            nonce=nonce,
        )

    # Verification -------------------------------------------------------------

    def verify(self, token: str, checksum: Optional[str] = None) -> VerificationOutcome:
        now = self._now_ms()
        try:
            return self._verify(token, checksum, now)
        except Exception:
            log.exception("qr.verify.unexpected")
            return self._reject(TokenErrorCode.INVALID_FORMAT, now)

    def _verify(self, token: str, given_checksum: Optional[str], now: int) -> VerificationOutcome:
        if given_checksum is not None and not checksum_matches(str(token), given_checksum):
            return self._reject(TokenErrorCode.INVALID_FORMAT, now, stage="checksum")

        try:
            doc = self._cipher.open(token)
        except TokenFormatError as e:
            return self._reject(TokenErrorCode.INVALID_FORMAT, now, stage="decrypt", reason=str(e))

        try:
            payload = SecureTokenPayload.model_validate(doc)
        except ValidationError as e:
            return self._reject(TokenErrorCode.INVALID_FORMAT, now, stage="schema", errors=e.error_count())

        ttl_ms = payload.expires_at - now
        ttl = ttl_ms // 1000
        if payload.version != self.settings.current_version:
            return self._reject(TokenErrorCode.UNSUPPORTED_VERSION, now, ttl, version=payload.version)

        if ttl_ms <= 0:
            return self._reject(TokenErrorCode.EXPIRED, now, ttl)

        if not verify_signature(doc, self._signing_key):
            return self._reject(TokenErrorCode.INVALID_SIGNATURE, now, ttl)

        try:
            fresh = self.ledger.claim(NONCE_KEY_PREFIX + payload.nonce, self._record_expiry(payload.expires_at, now))
        except Exception as e:
            err = e.message if isinstance(e, LedgerUnavailable) else repr(e)
            log.error("qr.verify.ledger_unavailable", error=err)
            return self._reject(TokenErrorCode.REPLAY_ATTACK, now, ttl, issuer_verified=True)
        if not fresh:
            return self._reject(TokenErrorCode.REPLAY_ATTACK, now, ttl, issuer_verified=True, nonce_checked=True)

        log.info("qr.verify.accepted", type=payload.type.value, issuer_id=payload.issuer.id)
        return VerificationOutcome(
            success=True,
            verified_at=now,
            time_to_expiry_seconds=ttl,
            issuer_verified=True,
            nonce_checked=True,
            payload=payload,
        )

    def _record_expiry(self, expires_at_ms: int, now_ms: int) -> float:
        """Ledger TTL: the token's own expiry plus skew, never past the longest window."""
        skew = self.settings.clock_skew_seconds
        ceiling = now_ms / 1000 + self.settings.max_expiry_minutes * 60 + skew
        return min(expires_at_ms / 1000 + skew, ceiling)

    def _reject(
        self,
        code: TokenErrorCode,
        now: int,
        ttl: int = 0,
        *,
        issuer_verified: bool = False,
        nonce_checked: bool = False,
        **ctx: Any,
    ) -> VerificationOutcome:
        log.info("qr.verify.rejected", code=code.value, **ctx)
        return VerificationOutcome(
            success=False,
            verified_at=now,
            time_to_expiry_seconds=ttl,
            issuer_verified=issuer_verified,
            nonce_checked=nonce_checked,
            error_code=code,
        )


def build_token_service(settings, ledger: Optional[NonceLedger] = None, **kwargs) -> SecureTokenService:
    """Wire a `SecureTokenService` from `core.config.Settings`."""
    settings.check_production()
    return SecureTokenService(settings.token, ledger or open_ledger(settings.ledger), **kwargs)


__all__ = ["NONCE_KEY_PREFIX", "SecureTokenService", "build_token_service"]
