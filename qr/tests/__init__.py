"""
qr.tests helpers

`reseal` opens a genuine token, lets a test rewrite the document and seals it
again under the service's own AEAD key. The result decrypts fine, so it
exercises the checks that run after decryption (schema, version, expiry,
signature).
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from qr.codec import TokenCipher, sign_payload


def cipher_for(service) -> TokenCipher:
    return TokenCipher(service.settings.encryption_secret.get_secret_value().encode("utf-8"))


def reseal(
    service,
    token: str,
    edit: Callable[[Dict[str, Any]], None],
    *,
    resign: bool = False,
    signing_secret: Optional[bytes] = None,
) -> str:
    cipher = cipher_for(service)
    doc = cipher.open(token)
    edit(doc)
    if resign:
        key = signing_secret or service.settings.signing_secret.get_secret_value().encode("utf-8")
        doc["signature"] = sign_payload(doc, key)
    return cipher.seal(doc)


LOGIN_REQUEST = {
    "type": "login_request",
    "expiryMinutes": 15,
    "payload": {"sessionId": "sess-42", "redirectUrl": "https://rp.example.com/callback"},
}
