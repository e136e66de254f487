"""
Token redemption: token checks first, then the proofs it carries.

    redeem(token, checksum=None) -> RedemptionOutcome

Only a token the `SecureTokenService` accepted has its embedded proofs handed
to the `Verifier`; a rejected token never costs a pairing check. With
``enforce_nullifiers`` every verified proof's nullifier is claimed on a ledger
(``nullifier:<circuit>:<hash>``), so presenting the same underlying identity
proof twice is refused with ``NULLIFIER_REUSED``.

`redeem_batch` fans many tokens out over a bounded thread pool. Its pool must
not be the verifier's pool: batch workers block on pairing checks submitted
there.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from core.errors import ArtifactsUnavailable, LedgerUnavailable, NullifierReused, VeridityError
from core.logging import get_logger
from replay.ledger import NonceLedger
from zk.pool import WorkerPool
from zk.verifier import ProofOutcome, Verifier

from .schema import EmbeddedProof, VerificationOutcome
from .service import SecureTokenService

log = get_logger(__name__)

NULLIFIER_KEY_PREFIX = "nullifier:"
DEFAULT_NULLIFIER_TTL = 10 * 365 * 24 * 3600

RedeemItem = Union[str, Tuple[str, Optional[str]]]


@dataclass(frozen=True)
class RedemptionOutcome:
    success: bool
    token: Optional[VerificationOutcome]
    proofs: Tuple[ProofOutcome, ...] = ()
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "token": self.token.to_dict() if self.token is not None else None,
            "proofs": [p.to_dict() for p in self.proofs],
        }
        if self.error_code:
            out["error"] = {"code": self.error_code}
        return out


class ProofRedeemer:
    def __init__(
        self,
        tokens: SecureTokenService,
        verifier: Verifier,
        *,
        nullifier_ledger: Optional[NonceLedger] = None,
        enforce_nullifiers: bool = False,
        nullifier_ttl_seconds: float = DEFAULT_NULLIFIER_TTL,
        pool: Optional[WorkerPool] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if enforce_nullifiers and nullifier_ledger is None:
            nullifier_ledger = tokens.ledger
        self.tokens = tokens
        self.verifier = verifier
        self.nullifier_ledger = nullifier_ledger
        self.enforce_nullifiers = enforce_nullifiers
        self.nullifier_ttl_seconds = nullifier_ttl_seconds
        self.pool = pool
        self._clock = clock

    def redeem(self, token: str, checksum: Optional[str] = None) -> RedemptionOutcome:
        verdict = self.tokens.verify(token, checksum)
        if not verdict.success or verdict.payload is None:
            return RedemptionOutcome(False, verdict)
        results = tuple(self._check_proof(p) for p in verdict.payload.proofs())
        ok = all(r.success for r in results)
        log.info("qr.redeem.done", success=ok, proofs=len(results))
        return RedemptionOutcome(ok, verdict, results)

    def redeem_batch(self, items: Iterable[RedeemItem], *, window: Optional[int] = None) -> List[RedemptionOutcome]:
        pairs = [(it, None) if isinstance(it, str) else (it[0], it[1]) for it in items]
        if self.pool is None:
            return [self.redeem(t, c) for t, c in pairs]
        results = self.pool.map_bounded(lambda pair: self.redeem(*pair), pairs, window=window)
        out: List[RedemptionOutcome] = []
        for res in results:
            if isinstance(res, ArtifactsUnavailable):
                raise res
            if isinstance(res, VeridityError):
                out.append(RedemptionOutcome(False, None, error_code=res.code_value))
            elif isinstance(res, BaseException):
                raise res
            else:
                out.append(res)
        return out

    def _check_proof(self, item: EmbeddedProof) -> ProofOutcome:
        res = self.verifier.verify_proof(item.claim_type, item.proof, item.public_signals)
        if not res.success or not self.enforce_nullifiers or self.nullifier_ledger is None:
            return res
        key = f"{NULLIFIER_KEY_PREFIX}{res.circuit_id}:{res.nullifier_hash}"
        try:
            fresh = self.nullifier_ledger.claim(key, self._clock() + self.nullifier_ttl_seconds)
        except LedgerUnavailable as e:
            return self._failed(res, e)
        if not fresh:
            return self._failed(res, NullifierReused(str(res.nullifier_hash), circuit_id=res.circuit_id))
        return res

    def _failed(self, res: ProofOutcome, err: VeridityError) -> ProofOutcome:
        code = err.code_value
        log.info("qr.redeem.proof_rejected", circuit_id=res.circuit_id, code=code)
        return ProofOutcome(
            success=False,
            claim_type=res.claim_type,
            circuit_id=res.circuit_id,
            mode=res.mode,
            error_code=code,
            message=err.message,
        )


__all__ = ["NULLIFIER_KEY_PREFIX", "RedemptionOutcome", "ProofRedeemer"]
