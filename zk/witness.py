"""
Veridity zk.witness
===================

Maps relying-party level inputs onto the exact input names each circuit
declares, and draws a fresh random salt for every proof.

Age (age_verification)
----------------------
    private: dateOfBirth (ISO date string, date, datetime or unix seconds),
             identitySecret (per-holder field element, at least 128 bits)
    public:  ageThreshold (default 18), currentTimestamp (now, unix seconds)
    circuit: {ageThreshold, currentTimestamp, birthTimestamp, identitySecret, salt}

The nullifier is derived from identitySecret alone. A birth date has too few
possible values to hide behind a hash, and many holders share one.

Births before 1970 give negative unix timestamps. They are encoded as field
elements (value mod r); the circuit only ever uses
``currentTimestamp - birthTimestamp``, which is the true age in seconds in
the field as long as the birth date is not in the future.

Citizenship (citizenship_verification)
--------------------------------------
    private: citizenshipNumber, district, merkleProof[16], merkleIndices[16]
    public:  merkleRoot, districtFilter (default 0 = any district)
    circuit: {merkleRoot, districtFilter, hashedId, district,
              merkleProof, merkleIndices, salt}

All circuit inputs are emitted as decimal strings (snarkjs input.json form).
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from core.errors import InvalidInput
from zk.claims import MERKLE_DEPTH, CircuitId, circuit_spec
from zk.nullifiers import FR, hash_identifier

SECONDS_PER_YEAR = 31_557_600  # 365.25 days
SALT_BITS = 248
MIN_IDENTITY_SECRET_BITS = 128


def fresh_salt() -> int:
    """A new salt per proof; never reused across proofs of the same private value."""
    return secrets.randbits(SALT_BITS)


def new_identity_secret() -> int:
    """A holder secret for age proofs; keep it with the credential and reuse it."""
    return secrets.randbelow(FR - (1 << MIN_IDENTITY_SECRET_BITS)) + (1 << MIN_IDENTITY_SECRET_BITS)


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


class _Inputs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AgePrivateInputs(_Inputs):
    date_of_birth: Union[datetime, date, int, str]
    identity_secret: int

    @field_validator("identity_secret", mode="before")
    @classmethod
    def _secret(cls, v):
        v = _field_int(v)
        if v.bit_length() < MIN_IDENTITY_SECRET_BITS:
            raise ValueError(f"identitySecret must carry at least {MIN_IDENTITY_SECRET_BITS} bits")
        return v

    def birth_timestamp(self) -> int:
        dob = self.date_of_birth
        if isinstance(dob, bool):
            raise ValueError("dateOfBirth must be a date")
        if isinstance(dob, int):
            return dob
        if isinstance(dob, str):
            s = dob.strip()
            try:
                dob = datetime.fromisoformat(s) if "T" in s or " " in s else date.fromisoformat(s)
            except ValueError:
                raise ValueError(f"unparseable dateOfBirth: {s!r}") from None
        if isinstance(dob, datetime):
            if dob.tzinfo is None:
                dob = dob.replace(tzinfo=timezone.utc)
            return int(dob.timestamp())
        return int(datetime(dob.year, dob.month, dob.day, tzinfo=timezone.utc).timestamp())


class AgePublicInputs(_Inputs):
    age_threshold: int = Field(18, ge=1, le=150)


class CitizenshipPrivateInputs(_Inputs):
    citizenship_number: str = Field(min_length=1)
    district: int = Field(0, ge=0)
    merkle_proof: List[int] = Field(min_length=MERKLE_DEPTH, max_length=MERKLE_DEPTH)
    merkle_indices: List[int] = Field(min_length=MERKLE_DEPTH, max_length=MERKLE_DEPTH)

    @field_validator("merkle_proof", mode="before")
    @classmethod
    def _field_elements(cls, v):
        if not isinstance(v, (list, tuple)):
            raise ValueError("merkleProof must be a list")
        return [_field_int(x) for x in v]

    @field_validator("merkle_indices")
    @classmethod
    def _bits(cls, v: List[int]) -> List[int]:
        if any(b not in (0, 1) for b in v):
            raise ValueError("merkleIndices must be 0 or 1")
        return v


class CitizenshipPublicInputs(_Inputs):
    merkle_root: int
    district_filter: int = Field(0, ge=0)

    @field_validator("merkle_root", mode="before")
    @classmethod
    def _root(cls, v):
        return _field_int(v)


def _field_int(x: Any) -> int:
    if isinstance(x, bool):
        raise ValueError("expected a field element")
    try:
        v = int(x, 0) if isinstance(x, str) else int(x)
    except (TypeError, ValueError):
        raise ValueError("expected a field element") from None
    if not 0 <= v < FR:
        raise ValueError("value outside the BN254 scalar field")
    return v


# ---------------------------------------------------------------------------
# Witness
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Witness:
    circuit_id: CircuitId
    inputs: Dict[str, Any]
    private_value: int
    nullifier_key: int
    salt: int

    def public_value(self, name: str) -> str:
        return self.inputs[name]


def _validate(model: type, data: Optional[Mapping[str, Any]], circuit_id: CircuitId) -> Any:
    try:
        return model.model_validate(dict(data or {}))
    except ValidationError as e:
        raise InvalidInput(
            f"invalid inputs for {circuit_id.value}",
            circuit_id=circuit_id.value,
            errors=[f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()],
        ) from None


def build_age_witness(
    private_inputs: Mapping[str, Any],
    public_inputs: Optional[Mapping[str, Any]] = None,
    *,
    now: Optional[int] = None,
    salt: Optional[int] = None,
) -> Witness:
    priv = _validate(AgePrivateInputs, private_inputs, CircuitId.AGE)
    pub = _validate(AgePublicInputs, public_inputs, CircuitId.AGE)
    now = int(time.time()) if now is None else int(now)
    try:
        birth = priv.birth_timestamp()
    except ValueError as e:
        raise InvalidInput(str(e), circuit_id=CircuitId.AGE.value) from None
    if birth > now:
        raise InvalidInput("dateOfBirth is in the future", circuit_id=CircuitId.AGE.value)
    salt = fresh_salt() if salt is None else salt
    birth_fe = birth % FR
    return Witness(
        circuit_id=CircuitId.AGE,
        inputs={
            "ageThreshold": str(pub.age_threshold),
            "currentTimestamp": str(now),
            "birthTimestamp": str(birth_fe),
            "identitySecret": str(priv.identity_secret),
            "salt": str(salt),
        },
        private_value=birth_fe,
        nullifier_key=priv.identity_secret,
        salt=salt,
    )


def build_citizenship_witness(
    private_inputs: Mapping[str, Any],
    public_inputs: Optional[Mapping[str, Any]] = None,
    *,
    salt: Optional[int] = None,
) -> Witness:
    priv = _validate(CitizenshipPrivateInputs, private_inputs, CircuitId.CITIZENSHIP)
    pub = _validate(CitizenshipPublicInputs, public_inputs, CircuitId.CITIZENSHIP)
    salt = fresh_salt() if salt is None else salt
    hashed_id = hash_identifier(priv.citizenship_number)
    return Witness(
        circuit_id=CircuitId.CITIZENSHIP,
        inputs={
            "merkleRoot": str(pub.merkle_root),
            "districtFilter": str(pub.district_filter),
            "hashedId": str(hashed_id),
            "district": str(priv.district),
            "merkleProof": [str(x) for x in priv.merkle_proof],
            "merkleIndices": [str(x) for x in priv.merkle_indices],
            "salt": str(salt),
        },
        private_value=hashed_id,
        nullifier_key=hashed_id,
        salt=salt,
    )


def build_witness(
    circuit_id: Union[str, CircuitId],
    private_inputs: Mapping[str, Any],
    public_inputs: Optional[Mapping[str, Any]] = None,
    *,
    now: Optional[int] = None,
) -> Witness:
    """Dispatch on circuit id; unknown ids raise UnknownCircuit."""
    spec = circuit_spec(circuit_id)
    if spec.circuit_id is CircuitId.AGE:
        return build_age_witness(private_inputs, public_inputs, now=now)
    return build_citizenship_witness(private_inputs, public_inputs)


__all__ = [
    "SECONDS_PER_YEAR",
    "fresh_salt",
    "new_identity_secret",
    "AgePrivateInputs",
    "AgePublicInputs",
    "CitizenshipPrivateInputs",
    "CitizenshipPublicInputs",
    "Witness",
    "build_age_witness",
    "build_citizenship_witness",
    "build_witness",
]
