"""
Veridity zk.prover
==================

Generates Groth16 proofs for the registered circuits.

    generate_proof(circuit_id, private_inputs, public_inputs) -> GeneratedProof

Flow
----
1. Map inputs onto the circuit's input names (`zk.witness`), with a fresh salt.
2. Require the witness program and proving key in the artifact store.
   - Missing and mock disabled  -> ArtifactsUnavailable (logged at ERROR).
   - Missing and mock enabled   -> WARNING ``zk.prover.mock_fallback`` and the
     development mock backend (never reachable in production; see
     `core.config.Settings.mock_enabled`).
3. Run ``snarkjs groth16 fullprove`` in a scratch directory on the worker
   pool (a subprocess, so a thread pool is enough), bounded by the request
   timeout.
4. Return the proof, the public signals and the nullifier taken from the
   circuit's declared layout.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from circuits.artifacts import ArtifactStore, CircuitArtifacts
from circuits.toolchain import Toolchain
from core.errors import ArtifactsUnavailable, ProvingFailed
from core.logging import get_logger
from zk.adapters.snarkjs_loader import normalize_groth16_proof
from zk.claims import NULLIFIER_SIGNAL, CircuitId, circuit_spec
from zk.mock import mock_prove
from zk.pool import WorkerPool
from zk.witness import Witness, build_witness

log = get_logger(__name__)

MODE_GROTH16 = "groth16"
MODE_MOCK = "mock"


@dataclass(frozen=True)
class GeneratedProof:
    circuit_id: str
    proof: Dict[str, Any]
    public_signals: List[str]
    nullifier_hash: Optional[str]
    mode: str = MODE_GROTH16
    generated_at: int = field(default_factory=lambda: int(time.time()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "circuitId": self.circuit_id,
            "proof": self.proof,
            "publicSignals": list(self.public_signals),
            "nullifierHash": self.nullifier_hash,
            "mode": self.mode,
            "generatedAt": self.generated_at,
        }


class Prover:
    def __init__(
        self,
        store: ArtifactStore,
        toolchain: Toolchain,
        *,
        pool: Optional[WorkerPool] = None,
        allow_mock: bool = False,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.toolchain = toolchain
        self.pool = pool
        self.allow_mock = allow_mock
        self.timeout = timeout
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, *, pool: Optional[WorkerPool] = None, **kwargs) -> "Prover":
        if pool is None:
            pool = WorkerPool(
                max_workers=settings.pool.max_workers,
                kind="thread",
                batch_window=settings.pool.batch_window,
                default_timeout=settings.pool.request_timeout,
                name="veridity-prover",
            )
        toolchain = kwargs.pop("toolchain", None) or Toolchain.from_settings(settings.zk)
        return cls(
            kwargs.pop("store", None) or ArtifactStore(settings.zk.artifacts_dir),
            toolchain,
            pool=pool,
            allow_mock=settings.mock_enabled,
            timeout=settings.pool.request_timeout,
            **kwargs,
        )

    # Public API ---------------------------------------------------------------

    def is_real_available(self, circuit_id: Union[str, CircuitId]) -> bool:
        return self.store.paths(circuit_id).can_prove

    def generate_proof(
        self,
        circuit_id: Union[str, CircuitId],
        private_inputs: Mapping[str, Any],
        public_inputs: Optional[Mapping[str, Any]] = None,
    ) -> GeneratedProof:
        witness, art = self._prepare(circuit_id, private_inputs, public_inputs)
        if art is None:
            proof, signals = mock_prove(witness)
            return self._finish(witness, proof, signals, MODE_MOCK)
        if self.pool is not None:
            proof, signals = self.pool.run(self._prove_real, witness, art, timeout=self.timeout)
        else:
            proof, signals = self._prove_real(witness, art)
        return self._finish(witness, proof, signals, MODE_GROTH16)

    async def agenerate_proof(
        self,
        circuit_id: Union[str, CircuitId],
        private_inputs: Mapping[str, Any],
        public_inputs: Optional[Mapping[str, Any]] = None,
    ) -> GeneratedProof:
        """Event-loop friendly variant; proving always runs on the pool."""
        witness, art = self._prepare(circuit_id, private_inputs, public_inputs)
        if art is None:
            proof, signals = mock_prove(witness)
            return self._finish(witness, proof, signals, MODE_MOCK)
        if self.pool is not None:
            proof, signals = await self.pool.run_async(self._prove_real, witness, art, timeout=self.timeout)
        else:
            proof, signals = await asyncio.to_thread(self._prove_real, witness, art)
        return self._finish(witness, proof, signals, MODE_GROTH16)

    # Internals ----------------------------------------------------------------

    def _prepare(
        self,
        circuit_id: Union[str, CircuitId],
        private_inputs: Mapping[str, Any],
        public_inputs: Optional[Mapping[str, Any]],
    ) -> Tuple[Witness, Optional[CircuitArtifacts]]:
        spec = circuit_spec(circuit_id)
        witness = build_witness(spec.circuit_id, private_inputs, public_inputs, now=int(self._clock()))
        art = self.store.paths(spec.circuit_id)
        if art.can_prove:
            return witness, art
        missing = art.missing_for_proving()
        if not self.allow_mock:
            log.error("zk.prover.artifacts_unavailable", circuit_id=art.circuit_id, missing=missing)
            raise ArtifactsUnavailable(art.circuit_id, missing)
        log.warning("zk.prover.mock_fallback", circuit_id=art.circuit_id, missing=missing)
        return witness, None

    def _prove_real(self, witness: Witness, art: CircuitArtifacts) -> Tuple[Dict[str, Any], List[str]]:
        with self.store.scratch(witness.circuit_id) as tmp:
            input_json = tmp / "input.json"
            proof_json = tmp / "proof.json"
            public_json = tmp / "public.json"
            with input_json.open("w", encoding="utf-8") as fh:
                json.dump(witness.inputs, fh)
            self.toolchain.fullprove(input_json, art.wasm, art.zkey, proof_json, public_json)
            proof = _read_json(proof_json)
            public = _read_json(public_json)
        try:
            normalize_groth16_proof(proof)
        except ValueError as e:
            raise ProvingFailed("prover emitted a malformed proof", circuit_id=art.circuit_id).with_cause(e)
        if not isinstance(public, list):
            raise ProvingFailed("prover emitted malformed public signals", circuit_id=art.circuit_id)
        return proof, [str(s) for s in public]

    def _finish(self, witness: Witness, proof: Dict[str, Any], signals: List[str], mode: str) -> GeneratedProof:
        spec = circuit_spec(witness.circuit_id)
        if len(signals) != spec.arity:
            raise ProvingFailed(
                "prover emitted an unexpected number of public signals",
                circuit_id=spec.circuit_id.value,
                expected=spec.arity,
                got=len(signals),
            )
        nullifier_hash = signals[spec.index(NULLIFIER_SIGNAL)]
        log.info("zk.prover.generated", circuit_id=spec.circuit_id.value, mode=mode)
        return GeneratedProof(spec.circuit_id.value, proof, signals, nullifier_hash, mode, int(self._clock()))


def _read_json(p: Path) -> Any:
    try:
        with p.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, ValueError) as e:
        raise ProvingFailed(f"prover output unreadable: {p.name}").with_cause(e)


__all__ = ["MODE_GROTH16", "MODE_MOCK", "GeneratedProof", "Prover"]
