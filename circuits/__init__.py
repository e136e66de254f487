"""
Veridity circuits
=================

Circuit sources (``circuits/sources/*.circom``) and the pipeline that turns
them into Groth16 proving and verification keys:

- `circuits.artifacts`  filesystem layout, atomic publishing, VK cache
- `circuits.toolchain`  circom / snarkjs invocations
- `circuits.builder`    compile -> universal setup -> circuit keys
"""

from .artifacts import ArtifactStore, CircuitArtifacts
from .builder import BuildResult, CircuitBuilder
from .toolchain import Toolchain

__all__ = ["ArtifactStore", "CircuitArtifacts", "BuildResult", "CircuitBuilder", "Toolchain"]
