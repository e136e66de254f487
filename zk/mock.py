"""
Development-only mock proving backend.

Reachable only when `Settings.mock_enabled` is true (``zk.allow_mock`` set
and environment not ``production``) and the real artifacts are absent. It
evaluates the circuit's predicate in Python and emits public signals in the
real layout, so everything downstream of the prover behaves the same.

It proves nothing: the "proof" object only marks its origin, and the verifier
only checks arity and the validity flag for it. Registry membership for
citizenship is not evaluated (the registry tree hash is circuit-side).
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Tuple

from core.errors import MalformedProof
from zk.claims import (COMMITMENT_SIGNAL, NULLIFIER_SIGNAL, VALIDITY_SIGNAL,
                       CircuitId, CircuitSpec, circuit_spec)
from zk.nullifiers import FR, commitment, nullifier
from zk.witness import SECONDS_PER_YEAR, Witness

MOCK_PROTOCOL = "veridity-mock"
_AGE_BITS = 64


def _age_valid(w: Witness) -> bool:
    now = int(w.inputs["currentTimestamp"])
    age_seconds = (now - w.private_value) % FR
    need = int(w.inputs["ageThreshold"]) * SECONDS_PER_YEAR
    return age_seconds < (1 << _AGE_BITS) and age_seconds >= need


def _citizenship_valid(w: Witness) -> bool:
    district_filter = int(w.inputs["districtFilter"])
    return district_filter == 0 or int(w.inputs["district"]) == district_filter


def mock_prove(w: Witness) -> Tuple[Dict[str, Any], List[str]]:
    """Return (proof, public_signals) for a witness, using the circuit's signal layout."""
    spec = circuit_spec(w.circuit_id)
    valid = _age_valid(w) if w.circuit_id is CircuitId.AGE else _citizenship_valid(w)
    values = {
        VALIDITY_SIGNAL: "1" if valid else "0",
        NULLIFIER_SIGNAL: str(nullifier(w.circuit_id.value, w.nullifier_key)),
        COMMITMENT_SIGNAL: str(commitment(w.private_value, w.salt)),
    }
    signals = [values[name] if name in values else str(w.inputs[name]) for name in spec.public_signals]
    proof = {"protocol": MOCK_PROTOCOL, "curve": "bn128", "circuit": w.circuit_id.value}
    return proof, signals


def check_mock_proof(spec: CircuitSpec, proof: Mapping[str, Any]) -> None:
    """
    Raise MalformedProof unless `proof` is a mock proof for this circuit.

    Arity and the validity flag are checked by the verifier for both backends.
    """
    if not isinstance(proof, Mapping) or proof.get("protocol") != MOCK_PROTOCOL:
        raise MalformedProof("not a mock proof", circuit_id=spec.circuit_id.value)
    if proof.get("circuit") != spec.circuit_id.value:
        raise MalformedProof("mock proof is for another circuit", circuit_id=spec.circuit_id.value)


__all__ = ["MOCK_PROTOCOL", "mock_prove", "check_mock_proof"]
