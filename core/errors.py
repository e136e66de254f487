"""
Veridity core.errors
--------------------

One error system shared by the circuit pipeline, the prover/verifier and the
token protocol.

Design goals
------------
- One root `VeridityError` with a machine-stable `code` and optional `data`.
- A `category` that tells callers how to react:
    * ``build``   : toolchain / ceremony failure; fatal, never retried
    * ``client``  : malformed input from a caller; reported, never retried
    * ``rejected``: well-formed input that fails cryptographic or claim checks
    * ``system``  : infrastructure fault (missing artifacts, ledger, deadline)
- Safe JSON representation (`to_dict`) for logs and API bridges.

Token-protocol rejections are *not* exceptions; they are reported through
`qr.schema.TokenErrorCode` on a `VerificationOutcome`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

# ---------------------------------------------------------------------------
# Codes & categories
# ---------------------------------------------------------------------------


class ErrorCategory(str, Enum):
    BUILD = "build"
    CLIENT = "client"
    REJECTED = "rejected"
    SYSTEM = "system"


class ErrorCode(str, Enum):
    INTERNAL = "INTERNAL"
    CONFIG = "CONFIG_ERROR"

    # Circuit build pipeline
    COMPILE = "COMPILE_ERROR"
    CEREMONY = "CEREMONY_ERROR"

    # Prover / verifier
    ARTIFACTS_UNAVAILABLE = "ARTIFACTS_UNAVAILABLE"
    UNKNOWN_CIRCUIT = "UNKNOWN_CIRCUIT"
    INVALID_INPUT = "INVALID_INPUT"
    PROVING_FAILED = "PROVING_FAILED"
    MALFORMED_PROOF = "MALFORMED_PROOF"
    SIGNAL_ARITY_MISMATCH = "SIGNAL_ARITY_MISMATCH"
    UNKNOWN_CLAIM_TYPE = "UNKNOWN_CLAIM_TYPE"
    PAIRING_CHECK_FAILED = "PAIRING_CHECK_FAILED"
    CLAIM_NOT_SATISFIED = "CLAIM_NOT_SATISFIED"
    NULLIFIER_REUSED = "NULLIFIER_REUSED"

    # Shared infrastructure
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"


@dataclass(eq=False)
class VeridityError(Exception):
    """
    Root error for Veridity components.

    Attributes
    ----------
    code: str
        Machine-stable error code (see ErrorCode).
    message: str
        Human hint suitable for logs; never carries private inputs or keys.
    data: dict
        Optional machine data (circuit ids, lengths, paths). JSON-serializable.
    category: ErrorCategory
        How the caller should treat the failure.
    retryable: bool
        Whether the operation may succeed on retry without changing inputs.
    cause: Optional[BaseException]
        Wrapped original exception; not included in equality comparison.
    """

    code: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    category: ErrorCategory = ErrorCategory.SYSTEM
    retryable: bool = False
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        super().__init__(f"{_code_str(self.code)}: {self.message}")

    @property
    def code_value(self) -> str:
        return _code_str(self.code)

    def with_cause(self, exc: BaseException) -> "VeridityError":
        """Attach the causal exception and return self (for `raise X(...).with_cause(e)`)."""
        self.cause = exc
        self.__cause__ = exc
        return self

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        out = {
            "code": _code_str(self.code),
            "message": self.message,
            "category": self.category.value,
            "data": _jsonmap(self.data),
            "retryable": self.retryable,
        }
        if include_cause and self.cause is not None:
            out["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}
        return out

    def __str__(self) -> str:  # pragma: no cover - human formatting
        parts = [f"{_code_str(self.code)}: {self.message}"]
        if self.data:
            preview = ", ".join(f"{k}={_preview(v)}" for k, v in self.data.items())
            parts.append(f"[{preview}]")
        return " ".join(parts)


# ---------------------------------------------------------------------------
# Concrete subclasses
# ---------------------------------------------------------------------------


class ConfigError(VeridityError):
    def __init__(self, message="invalid configuration", **data: Any) -> None:
        super().__init__(code=ErrorCode.CONFIG, message=message, data=_jsonmap(data))


class CompileError(VeridityError):
    def __init__(self, message="circuit compilation failed", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.COMPILE,
            message=message,
            data=_jsonmap(data),
            category=ErrorCategory.BUILD,
        )


class CeremonyError(VeridityError):
    def __init__(self, message="trusted setup ceremony failed", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.CEREMONY,
            message=message,
            data=_jsonmap(data),
            category=ErrorCategory.BUILD,
        )


class ArtifactsUnavailable(VeridityError):
    def __init__(self, circuit_id: str, missing: Optional[list] = None, **data: Any) -> None:
        super().__init__(
            code=ErrorCode.ARTIFACTS_UNAVAILABLE,
            message=f"artifacts unavailable for circuit {circuit_id}",
            data=_jsonmap({"circuit_id": circuit_id, "missing": list(missing or []), **data}),
        )


class UnknownCircuit(VeridityError):
    def __init__(self, circuit_id: str) -> None:
        super().__init__(
            code=ErrorCode.UNKNOWN_CIRCUIT,
            message=f"unknown circuit: {circuit_id}",
            data={"circuit_id": str(circuit_id)},
            category=ErrorCategory.CLIENT,
        )


class InvalidInput(VeridityError):
    def __init__(self, message="invalid proof input", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.INVALID_INPUT,
            message=message,
            data=_jsonmap(data),
            category=ErrorCategory.CLIENT,
        )


class ProvingFailed(VeridityError):
    def __init__(self, message="proof generation failed", **data: Any) -> None:
        super().__init__(code=ErrorCode.PROVING_FAILED, message=message, data=_jsonmap(data))


class MalformedProof(VeridityError):
    def __init__(self, message="malformed proof", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.MALFORMED_PROOF,
            message=message,
            data=_jsonmap(data),
            category=ErrorCategory.CLIENT,
        )


class SignalArityMismatch(VeridityError):
    def __init__(self, expected: int, got: int, **data: Any) -> None:
        super().__init__(
            code=ErrorCode.SIGNAL_ARITY_MISMATCH,
            message=f"expected {expected} public signals, got {got}",
            data=_jsonmap({"expected": expected, "got": got, **data}),
            category=ErrorCategory.CLIENT,
        )


class UnknownClaimType(VeridityError):
    def __init__(self, claim_type: str) -> None:
        super().__init__(
            code=ErrorCode.UNKNOWN_CLAIM_TYPE,
            message=f"unknown claim type: {claim_type}",
            data={"claim_type": str(claim_type)},
            category=ErrorCategory.CLIENT,
        )


class PairingCheckFailed(VeridityError):
    def __init__(self, message="pairing check failed", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.PAIRING_CHECK_FAILED,
            message=message,
            data=_jsonmap(data),
            category=ErrorCategory.REJECTED,
        )


class ClaimNotSatisfied(VeridityError):
    def __init__(self, message="claim not satisfied", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.CLAIM_NOT_SATISFIED,
            message=message,
            data=_jsonmap(data),
            category=ErrorCategory.REJECTED,
        )


class NullifierReused(VeridityError):
    def __init__(self, nullifier: str, **data: Any) -> None:
        super().__init__(
            code=ErrorCode.NULLIFIER_REUSED,
            message="nullifier already used",
            data=_jsonmap({"nullifier": nullifier, **data}),
            category=ErrorCategory.REJECTED,
        )


class LedgerUnavailable(VeridityError):
    def __init__(self, message="nonce ledger unavailable", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.LEDGER_UNAVAILABLE,
            message=message,
            data=_jsonmap(data),
            retryable=True,
        )


class DeadlineExceeded(VeridityError):
    def __init__(self, message="deadline exceeded", **data: Any) -> None:
        super().__init__(
            code=ErrorCode.DEADLINE_EXCEEDED,
            message=message,
            data=_jsonmap(data),
            retryable=True,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _code_str(code: Any) -> str:
    return code.value if isinstance(code, Enum) else str(code)


def _jsonmap(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: _coerce_json(v) for k, v in data.items()}


def _coerce_json(v: Any) -> Any:
    # Keep JSON primitives; stringify the rest; hex-encode bytes.
    if v is None or isinstance(v, (bool, int, float, str)):
        return v
    if isinstance(v, (list, tuple)):
        return [_coerce_json(x) for x in v]
    if isinstance(v, dict):
        return {str(k): _coerce_json(x) for k, x in v.items()}
    if isinstance(v, (bytes, bytearray)):
        return v.hex()
    return str(v)


def _preview(v: Any, limit: int = 96) -> str:
    s = str(_coerce_json(v))
    return s if len(s) <= limit else s[:limit] + "…"


__all__ = [
    "ErrorCategory",
    "ErrorCode",
    "VeridityError",
    "ConfigError",
    "CompileError",
    "CeremonyError",
    "ArtifactsUnavailable",
    "UnknownCircuit",
    "InvalidInput",
    "ProvingFailed",
    "MalformedProof",
    "SignalArityMismatch",
    "UnknownClaimType",
    "PairingCheckFailed",
    "ClaimNotSatisfied",
    "NullifierReused",
    "LedgerUnavailable",
    "DeadlineExceeded",
]
