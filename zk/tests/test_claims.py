from __future__ import annotations

import pytest

from core.errors import ErrorCode, UnknownCircuit, UnknownClaimType
from zk.claims import (CIRCUITS, NULLIFIER_SIGNAL, VALIDITY_SIGNAL, CircuitId,
                       circuit_spec, resolve_claim)
from zk.nullifiers import FR, commitment, hash_identifier, nullifier


@pytest.mark.parametrize(
    "claim, circuit, expected",
    [
        ("age_over_18", CircuitId.AGE, {"ageThreshold": 18}),
        ("age_over_21", CircuitId.AGE, {"ageThreshold": 21}),
        ("citizenship", CircuitId.CITIZENSHIP, {}),
        ("citizenship_verification", CircuitId.CITIZENSHIP, {}),
    ],
)
def test_claim_table(claim, circuit, expected):
    spec = resolve_claim(claim)
    assert spec.circuit_id is circuit
    assert dict(spec.expected) == expected


def test_unknown_claim_type():
    with pytest.raises(UnknownClaimType) as ei:
        resolve_claim("age_over_65")
    assert ei.value.code == ErrorCode.UNKNOWN_CLAIM_TYPE


def test_unknown_circuit():
    with pytest.raises(UnknownCircuit):
        circuit_spec("income_verification")


@pytest.mark.parametrize("cid", list(CIRCUITS))
def test_signal_layout_starts_with_validity_and_nullifier(cid):
    spec = CIRCUITS[cid]
    assert spec.index(VALIDITY_SIGNAL) == 0
    assert spec.index(NULLIFIER_SIGNAL) == 1
    assert spec.arity == 5
    assert spec.source == f"{cid.value}.circom"


def test_nullifier_is_deterministic_and_circuit_scoped():
    v = hash_identifier("12-34-56-78901")
    assert nullifier("age_verification", v) == nullifier("age_verification", v)
    assert nullifier("age_verification", v) != nullifier("citizenship_verification", v)
    assert 0 <= nullifier("age_verification", v) < FR


def test_identifier_hash_ignores_surrounding_whitespace():
    assert hash_identifier(" 12-34 ") == hash_identifier("12-34")


def test_commitment_depends_on_salt():
    assert commitment(42, 1) != commitment(42, 2)
