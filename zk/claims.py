"""
Veridity zk.claims
==================

Static tables binding relying-party **claim types** to **circuits**.

Every circuit's public-signal layout is declared here once; the prover, the
mock backend and the verifier all index signals by name through
`CircuitSpec.index`, so the position of the validity flag or the nullifier is
never hard-coded elsewhere.

Layout convention (circom: outputs first, then public inputs in declaration order)
----------------------------------------------------------------------------------
- age_verification:          isValid, nullifierHash, commitment, ageThreshold, currentTimestamp
- citizenship_verification:  isValid, nullifierHash, commitment, merkleRoot, districtFilter

Claim table
-----------
- age_over_18               → age_verification          (ageThreshold = 18)
- age_over_21               → age_verification          (ageThreshold = 21)
- citizenship               → citizenship_verification
- citizenship_verification  → citizenship_verification
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Tuple, Union

from core.errors import UnknownCircuit, UnknownClaimType

VALIDITY_SIGNAL = "isValid"
NULLIFIER_SIGNAL = "nullifierHash"
COMMITMENT_SIGNAL = "commitment"

MERKLE_DEPTH = 16


class CircuitId(str, Enum):
    AGE = "age_verification"
    CITIZENSHIP = "citizenship_verification"


class ClaimType(str, Enum):
    AGE_OVER_18 = "age_over_18"
    AGE_OVER_21 = "age_over_21"
    CITIZENSHIP = "citizenship"
    CITIZENSHIP_VERIFICATION = "citizenship_verification"


@dataclass(frozen=True)
class CircuitSpec:
    circuit_id: CircuitId
    constraint_tier: int
    public_signals: Tuple[str, ...]
    private_inputs: Tuple[str, ...]
    ceremony_name: str

    @property
    def arity(self) -> int:
        return len(self.public_signals)

    @property
    def source(self) -> str:
        return f"{self.circuit_id.value}.circom"

    def index(self, name: str) -> int:
        return self.public_signals.index(name)


@dataclass(frozen=True)
class ClaimSpec:
    claim_type: ClaimType
    circuit_id: CircuitId
    expected: Mapping[str, int] = field(default_factory=dict)
    description: str = ""


CIRCUITS: Dict[CircuitId, CircuitSpec] = {
    CircuitId.AGE: CircuitSpec(
        circuit_id=CircuitId.AGE,
        constraint_tier=12,
        public_signals=(VALIDITY_SIGNAL, NULLIFIER_SIGNAL, COMMITMENT_SIGNAL, "ageThreshold", "currentTimestamp"),
        private_inputs=("birthTimestamp", "identitySecret", "salt"),
        ceremony_name="Veridity Age Verification",
    ),
    CircuitId.CITIZENSHIP: CircuitSpec(
        circuit_id=CircuitId.CITIZENSHIP,
        constraint_tier=14,
        public_signals=(VALIDITY_SIGNAL, NULLIFIER_SIGNAL, COMMITMENT_SIGNAL, "merkleRoot", "districtFilter"),
        private_inputs=("hashedId", "district", "merkleProof", "merkleIndices", "salt"),
        ceremony_name="Veridity Citizenship Verification",
    ),
}

CLAIMS: Dict[ClaimType, ClaimSpec] = {
    ClaimType.AGE_OVER_18: ClaimSpec(
        ClaimType.AGE_OVER_18, CircuitId.AGE, {"ageThreshold": 18}, "holder is at least 18 years old"
    ),
    ClaimType.AGE_OVER_21: ClaimSpec(
        ClaimType.AGE_OVER_21, CircuitId.AGE, {"ageThreshold": 21}, "holder is at least 21 years old"
    ),
    ClaimType.CITIZENSHIP: ClaimSpec(
        ClaimType.CITIZENSHIP, CircuitId.CITIZENSHIP, {}, "holder is in the citizenship registry"
    ),
    ClaimType.CITIZENSHIP_VERIFICATION: ClaimSpec(
        ClaimType.CITIZENSHIP_VERIFICATION, CircuitId.CITIZENSHIP, {}, "holder is in the citizenship registry"
    ),
}


def resolve_claim(claim_type: Union[str, ClaimType]) -> ClaimSpec:
    """Map a claim type string to its spec; unknown strings raise UnknownClaimType."""
    try:
        return CLAIMS[ClaimType(claim_type)]
    except ValueError:
        raise UnknownClaimType(str(claim_type)) from None


def circuit_spec(circuit_id: Union[str, CircuitId]) -> CircuitSpec:
    try:
        return CIRCUITS[CircuitId(circuit_id)]
    except ValueError:
        raise UnknownCircuit(str(circuit_id)) from None


__all__ = [
    "VALIDITY_SIGNAL",
    "NULLIFIER_SIGNAL",
    "COMMITMENT_SIGNAL",
    "MERKLE_DEPTH",
    "CircuitId",
    "ClaimType",
    "CircuitSpec",
    "ClaimSpec",
    "CIRCUITS",
    "CLAIMS",
    "resolve_claim",
    "circuit_spec",
]
