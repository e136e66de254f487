from __future__ import annotations

"""
Token codec: canonical JSON, HMAC signing, AEAD sealing, checksums
==================================================================

Wire form of a token
--------------------

    token    = base64( iv[12] || AES-256-GCM(key, iv, canonical_json(payload), AAD) )
    checksum = sha256(token)[:8 hex]          (pre-filter only, never a security boundary)
    deeplink = <base>/<urlencoded token>?c=<checksum>

* ``canonical_json`` sorts keys and uses compact separators, so the bytes are
  deterministic for a given document.
* The signature is HMAC-SHA256 over the canonical JSON of every top-level
  field except ``signature``.
* The AES key is never the configured secret itself: it is derived with
  HKDF-SHA256 under a fixed ``info`` label. A constant domain tag is bound as
  associated data.
* Any decoding problem (bad base64, short input, failed tag, bad UTF-8/JSON)
  surfaces as `TokenFormatError`.
"""

import base64
import binascii
import hashlib
import hmac
import json
import os
from typing import Any, Callable, Dict, Mapping
from urllib.parse import quote

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

AEAD_DOMAIN_TAG = b"veridity/qr-token/v1"
HKDF_INFO = b"veridity/qr-token/aes-256-gcm"
IV_SIZE = 12
KEY_SIZE = 32
CHECKSUM_LEN = 8
SIGNATURE_FIELD = "signature"


class TokenFormatError(ValueError):
    """Token bytes could not be decoded into a JSON document."""


def canonical_json(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _unsigned(doc: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in doc.items() if k != SIGNATURE_FIELD}


def sign_payload(doc: Mapping[str, Any], secret: bytes) -> str:
    """HMAC-SHA256 (hex) over every field of `doc` except ``signature``."""
    return hmac.new(secret, canonical_json(_unsigned(doc)), hashlib.sha256).hexdigest()


def verify_signature(doc: Mapping[str, Any], secret: bytes) -> bool:
    sig = doc.get(SIGNATURE_FIELD)
    if not isinstance(sig, str):
        return False
    return hmac.compare_digest(sign_payload(doc, secret).encode(), sig.encode("utf-8"))


def derive_key(secret: bytes, *, info: bytes = HKDF_INFO) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=None, info=info).derive(secret)


class TokenCipher:
    """
    AES-256-GCM over whole token documents.

    seal(doc) -> str           base64 token
    open(token) -> dict        raises TokenFormatError on any failure
    """

    def __init__(self, secret: bytes, *, iv_source: Callable[[int], bytes] = os.urandom) -> None:
        if not secret:
            raise ValueError("encryption secret must not be empty")
        self._aead = AESGCM(derive_key(secret))
        self._iv_source = iv_source

    def seal(self, doc: Mapping[str, Any]) -> str:
        iv = self._iv_source(IV_SIZE)
        if len(iv) != IV_SIZE:
            raise ValueError("iv must be 12 bytes")
        ct = self._aead.encrypt(iv, canonical_json(doc), AEAD_DOMAIN_TAG)
        return base64.b64encode(iv + ct).decode("ascii")

    def open(self, token: str) -> Dict[str, Any]:
        if not isinstance(token, str) or not token:
            raise TokenFormatError("token must be a non-empty string")
        try:
            raw = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise TokenFormatError("token is not valid base64") from e
        if base64.b64encode(raw).decode("ascii") != token:
            raise TokenFormatError("token is not canonical base64")
        if len(raw) <= IV_SIZE + 16:
            raise TokenFormatError("token is too short")
        try:
            plain = self._aead.decrypt(raw[:IV_SIZE], raw[IV_SIZE:], AEAD_DOMAIN_TAG)
        except InvalidTag as e:
            raise TokenFormatError("token failed authentication") from e
        try:
            doc = json.loads(plain.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise TokenFormatError("token plaintext is not JSON") from e
        if not isinstance(doc, dict):
            raise TokenFormatError("token plaintext is not a JSON object")
        return doc


def checksum(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:CHECKSUM_LEN]


def checksum_matches(token: str, given: str) -> bool:
    return isinstance(given, str) and hmac.compare_digest(checksum(token).encode(), given.encode("utf-8"))


def deep_link(base: str, token: str, check: str) -> str:
    return f"{base.rstrip('/')}/{quote(token, safe='')}?c={check}"


__all__ = [
    "AEAD_DOMAIN_TAG",
    "HKDF_INFO",
    "TokenFormatError",
    "canonical_json",
    "sign_payload",
    "verify_signature",
    "derive_key",
    "TokenCipher",
    "checksum",
    "checksum_matches",
    "deep_link",
]
