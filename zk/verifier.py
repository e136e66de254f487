"""
Veridity zk.verifier
====================

Claim-level proof verification.

    verify_proof(claim_type, proof, public_signals) -> ProofOutcome

A proof is accepted only when all of the following hold:

1. the claim type is known and maps to a circuit;
2. every public signal is a field element and their count equals the
   circuit's declared arity (and the verification key's ``nPublic``);
3. the Groth16 pairing equation holds for (vk, proof, signals);
4. the validity flag ``isValid`` equals 1;
5. the claim's pinned values hold (e.g. ``ageThreshold`` = 18 for
   ``age_over_18``), the proof timestamp is fresh, and the Merkle root is one
   of the trusted registry roots when such roots are configured.

Rejections of the caller's input come back as a `ProofOutcome` with an error
code; they are never raised. Missing verification keys are a deployment fault
and raise `ArtifactsUnavailable`, unless the development mock backend is
enabled, in which case only mock proofs are accepted for that circuit.

Pairing checks run on the shared `WorkerPool` so a request thread (or event
loop) never performs them inline.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from circuits.artifacts import ArtifactStore
from core.errors import (ArtifactsUnavailable, ClaimNotSatisfied, MalformedProof,
                         PairingCheckFailed, SignalArityMismatch, VeridityError)
from core.logging import get_logger
from zk.adapters.snarkjs_loader import normalize_groth16_proof
from zk.claims import (CIRCUITS, NULLIFIER_SIGNAL, VALIDITY_SIGNAL, CircuitId,
                       CircuitSpec, ClaimSpec, ClaimType, circuit_spec,
                       resolve_claim)
from zk.mock import check_mock_proof
from zk.nullifiers import FR
from zk.pool import WorkerPool
from zk.verifiers.groth16_bn254 import verify_groth16

log = get_logger(__name__)

MODE_GROTH16 = "groth16"
MODE_MOCK = "mock"


@dataclass(frozen=True)
class ProofOutcome:
    success: bool
    claim_type: str
    circuit_id: Optional[str] = None
    mode: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    nullifier_hash: Optional[str] = None
    public_signals: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "claimType": self.claim_type,
            "circuitId": self.circuit_id,
            "mode": self.mode,
        }
        if self.success:
            out["nullifierHash"] = self.nullifier_hash
            out["publicSignals"] = list(self.public_signals)
        else:
            out["error"] = {"code": self.error_code, "message": self.message}
        return out


@dataclass
class _Plan:
    claim: ClaimSpec
    spec: CircuitSpec
    signals: List[int]
    mode: str
    vk: Optional[Dict[str, Any]] = None
    proof: Optional[Dict[str, Any]] = None


def _label(v: Any) -> str:
    return v.value if isinstance(v, Enum) else str(v)


def _pairing_task(args: Tuple[Dict[str, Any], Dict[str, Any], List[int]]) -> bool:
    vk, proof, signals = args
    return verify_groth16(vk, proof, signals)


def _parse_signals(public_signals: Any) -> List[int]:
    if not isinstance(public_signals, (list, tuple)):
        raise MalformedProof("public signals must be a list")
    out: List[int] = []
    for i, s in enumerate(public_signals):
        try:
            v = int(s, 0) if isinstance(s, str) else int(s)
        except (TypeError, ValueError):
            raise MalformedProof("public signal is not an integer", index=i) from None
        if isinstance(s, bool) or not (0 <= v < FR):
            raise MalformedProof("public signal is not a field element", index=i)
        out.append(v)
    return out


class Verifier:
    def __init__(
        self,
        store: ArtifactStore,
        *,
        pool: Optional[WorkerPool] = None,
        allow_mock: bool = False,
        max_proof_age_seconds: Optional[int] = 3600,
        trusted_merkle_roots: Iterable[Union[str, int]] = (),
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.pool = pool
        self.allow_mock = allow_mock
        self.max_proof_age_seconds = max_proof_age_seconds
        self.trusted_merkle_roots = frozenset(int(str(r), 0) for r in trusted_merkle_roots)
        self.timeout = timeout
        self._clock = clock
        self._stats: Counter = Counter()
        self._stats_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, *, pool: Optional[WorkerPool] = None, **kwargs) -> "Verifier":
        zk = settings.zk
        return cls(
            kwargs.pop("store", None) or ArtifactStore(zk.artifacts_dir),
            pool=pool if pool is not None else WorkerPool.from_settings(settings.pool),
            allow_mock=settings.mock_enabled,
            max_proof_age_seconds=zk.max_proof_age_seconds,
            trusted_merkle_roots=zk.trusted_merkle_roots,
            timeout=settings.pool.request_timeout,
            **kwargs,
        )

    # Readiness ----------------------------------------------------------------

    def check_ready(self) -> Dict[str, str]:
        """
        Startup check: every circuit must have a usable verification key.

        Returns {circuit_id: mode}. Raises ArtifactsUnavailable for the first
        circuit without a key when the mock backend is disabled.
        """
        modes: Dict[str, str] = {}
        for cid in CIRCUITS:
            vk = self._load_vk(cid.value)
            if vk is not None:
                modes[cid.value] = MODE_GROTH16
            elif self.allow_mock:
                log.warning("zk.verifier.mock_mode", circuit_id=cid.value)
                modes[cid.value] = MODE_MOCK
            else:
                log.error("zk.verifier.artifacts_unavailable", circuit_id=cid.value)
                raise ArtifactsUnavailable(cid.value, ["vkey"])
        log.info("zk.verifier.ready", circuits=modes)
        return modes

    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    # Single proofs ------------------------------------------------------------

    def verify_proof(
        self,
        claim_type: Union[str, ClaimType],
        proof: Mapping[str, Any],
        public_signals: Sequence[Any],
        *,
        timeout: Optional[float] = None,
    ) -> ProofOutcome:
        try:
            plan = self._prepare(claim_type, proof, public_signals)
            if plan.mode == MODE_GROTH16:
                args = (plan.vk, plan.proof, plan.signals)
                if self.pool is not None:
                    ok = self.pool.run(_pairing_task, args, timeout=self._timeout(timeout))
                else:
                    ok = _pairing_task(args)
                self._require_pairing(plan, ok)
            return self._accept(claim_type, plan)
        except ArtifactsUnavailable:
            raise
        except VeridityError as e:
            return self._reject(claim_type, e)
        except ValueError as e:
            return self._reject(claim_type, MalformedProof(str(e)).with_cause(e))

    async def averify_proof(
        self,
        claim_type: Union[str, ClaimType],
        proof: Mapping[str, Any],
        public_signals: Sequence[Any],
        *,
        timeout: Optional[float] = None,
    ) -> ProofOutcome:
        """Same as `verify_proof`, awaiting the pairing check instead of blocking."""
        try:
            plan = self._prepare(claim_type, proof, public_signals)
            if plan.mode == MODE_GROTH16:
                pool = self._require_pool()
                ok = await pool.run_async(
                    _pairing_task, (plan.vk, plan.proof, plan.signals), timeout=self._timeout(timeout)
                )
                self._require_pairing(plan, ok)
            return self._accept(claim_type, plan)
        except ArtifactsUnavailable:
            raise
        except VeridityError as e:
            return self._reject(claim_type, e)
        except ValueError as e:
            return self._reject(claim_type, MalformedProof(str(e)).with_cause(e))

    # Batches ------------------------------------------------------------------

    def verify_batch(
        self,
        items: Iterable[Mapping[str, Any]],
        *,
        window: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[ProofOutcome]:
        """
        Verify many ``{claimType, proof, publicSignals}`` items.

        Structural checks run on the calling thread; the pairing checks are
        fanned out with at most `window` in flight. Outcomes keep input order.
        """
        items = list(items)
        plans: List[Union[_Plan, VeridityError]] = []
        for it in items:
            try:
                plans.append(self._prepare(it.get("claimType"), it.get("proof"), it.get("publicSignals")))
            except ArtifactsUnavailable:
                raise
            except VeridityError as e:
                plans.append(e)

        pending = [i for i, p in enumerate(plans) if isinstance(p, _Plan) and p.mode == MODE_GROTH16]
        tasks = [(plans[i].vk, plans[i].proof, plans[i].signals) for i in pending]
        if self.pool is not None:
            results = self.pool.map_bounded(_pairing_task, tasks, window=window, timeout=self._timeout(timeout))
        else:
            results = []
            for t in tasks:
                try:
                    results.append(_pairing_task(t))
                except ValueError as e:
                    results.append(e)
        pairing = dict(zip(pending, results))

        out: List[ProofOutcome] = []
        for i, (it, plan) in enumerate(zip(items, plans)):
            claim_type = it.get("claimType")
            try:
                if isinstance(plan, VeridityError):
                    raise plan
                if i in pairing:
                    res = pairing[i]
                    if isinstance(res, VeridityError):
                        raise res
                    if isinstance(res, ValueError):
                        raise MalformedProof(str(res)).with_cause(res)
                    if isinstance(res, BaseException):
                        raise res
                    self._require_pairing(plan, res)
                out.append(self._accept(claim_type, plan))
            except VeridityError as e:
                out.append(self._reject(claim_type, e))
        log.info("zk.verifier.batch", total=len(out), accepted=sum(1 for o in out if o.success))
        return out

    # Internals ----------------------------------------------------------------

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return self.timeout if timeout is None else timeout

    def _require_pool(self) -> WorkerPool:
        if self.pool is None:
            self.pool = WorkerPool(default_timeout=self.timeout)
        return self.pool

    def _load_vk(self, circuit_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.store.load_verification_key(circuit_id)
        except (OSError, ValueError) as e:
            log.error("zk.verifier.vkey_corrupt", circuit_id=circuit_id, error=str(e))
            raise ArtifactsUnavailable(circuit_id, ["vkey"], reason="unreadable").with_cause(e)

    def _prepare(self, claim_type: Any, proof: Any, public_signals: Any) -> _Plan:
        claim = resolve_claim(claim_type)
        spec = circuit_spec(claim.circuit_id)
        cid = spec.circuit_id.value
        signals = _parse_signals(public_signals)
        if len(signals) != spec.arity:
            raise SignalArityMismatch(spec.arity, len(signals), circuit_id=cid)

        vk = self._load_vk(cid)
        if vk is None:
            if not self.allow_mock:
                log.error("zk.verifier.artifacts_unavailable", circuit_id=cid)
                raise ArtifactsUnavailable(cid, ["vkey"])
            check_mock_proof(spec, proof)
            return _Plan(claim, spec, signals, MODE_MOCK)

        if vk["nPublic"] != len(signals):
            raise SignalArityMismatch(vk["nPublic"], len(signals), circuit_id=cid)
        try:
            norm, _ = normalize_groth16_proof(proof)
        except ValueError as e:
            raise MalformedProof(str(e), circuit_id=cid).with_cause(e)
        return _Plan(claim, spec, signals, MODE_GROTH16, vk=vk, proof=norm)

    def _require_pairing(self, plan: _Plan, ok: bool) -> None:
        if not ok:
            raise PairingCheckFailed(circuit_id=plan.spec.circuit_id.value)

    def _check_claim(self, plan: _Plan) -> None:
        spec, signals = plan.spec, plan.signals
        cid = spec.circuit_id.value

        if signals[spec.index(VALIDITY_SIGNAL)] != 1:
            raise ClaimNotSatisfied("circuit reported the claim as not satisfied", circuit_id=cid)

        for name, want in plan.claim.expected.items():
            got = signals[spec.index(name)]
            if got != int(want):
                raise ClaimNotSatisfied(f"{name} does not match the claim", circuit_id=cid, expected=want, got=got)

        if spec.circuit_id is CircuitId.AGE and self.max_proof_age_seconds is not None:
            issued = signals[spec.index("currentTimestamp")]
            if abs(int(self._clock()) - issued) > self.max_proof_age_seconds:
                raise ClaimNotSatisfied("proof timestamp is outside the freshness window", circuit_id=cid)

        if spec.circuit_id is CircuitId.CITIZENSHIP and self.trusted_merkle_roots:
            if signals[spec.index("merkleRoot")] not in self.trusted_merkle_roots:
                raise ClaimNotSatisfied("merkle root is not a trusted registry root", circuit_id=cid)

    def _accept(self, claim_type: Any, plan: _Plan) -> ProofOutcome:
        self._check_claim(plan)
        cid = plan.spec.circuit_id.value
        nullifier_hash = str(plan.signals[plan.spec.index(NULLIFIER_SIGNAL)])
        self._count("accepted")
        log.info("zk.verifier.accepted", claim_type=_label(claim_type), circuit_id=cid, mode=plan.mode)
        return ProofOutcome(
            success=True,
            claim_type=plan.claim.claim_type.value,
            circuit_id=cid,
            mode=plan.mode,
            nullifier_hash=nullifier_hash,
            public_signals=tuple(str(s) for s in plan.signals),
        )

    def _reject(self, claim_type: Any, err: VeridityError) -> ProofOutcome:
        code = err.code_value
        self._count(code)
        log.info("zk.verifier.rejected", claim_type=_label(claim_type), code=code, reason=err.message)
        return ProofOutcome(
            success=False,
            claim_type=_label(claim_type),
            circuit_id=err.data.get("circuit_id"),
            error_code=code,
            message=err.message,
        )

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats["total"] += 1
            self._stats[key] += 1


__all__ = ["MODE_GROTH16", "MODE_MOCK", "ProofOutcome", "Verifier"]
