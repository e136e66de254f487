"""
Circuit build pipeline
======================

Turns a circuit source into a proving key / verification key pair:

    compile  ->  universal setup (per tier)  ->  circuit keys  ->  publish

Each step is skipped when its output already exists, so `build` is
idempotent and safe to re-run after a crash. Intermediate ceremony files
live in a scratch directory that is removed whether the build succeeds or
not; only the final artifacts are published, each atomically, with the
verification key last.

Circuits are immutable once built: the manifest records the SHA-256 of the
source, and building again from a changed source is refused unless the
caller asks for an explicit ``rebuild`` (a version bump).

Builds of the same circuit are not meant to run concurrently; the ops
tooling runs one build per circuit at a time.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from core import __version__
from core.errors import CeremonyError, CompileError
from core.logging import get_logger
from zk.adapters.snarkjs_loader import normalize_groth16_vk
from zk.claims import CIRCUITS, CircuitId, CircuitSpec, circuit_spec

from .artifacts import ArtifactStore
from .toolchain import Toolchain

log = get_logger(__name__)


@dataclass(frozen=True)
class BuildResult:
    circuit_id: str
    proving_key: Path
    verification_key: Path
    steps_run: Tuple[str, ...]
    steps_skipped: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "circuit_id": self.circuit_id,
            "proving_key": str(self.proving_key),
            "verification_key": str(self.verification_key),
            "steps_run": list(self.steps_run),
            "steps_skipped": list(self.steps_skipped),
        }


def _sha256_file(p: Path) -> str:
    h = hashlib.sha256()
    with p.open("rb") as fh:
        for chunk in iter(lambda: fh.read(1 << 16), b""):
            h.update(chunk)
    return h.hexdigest()


def _require(*paths: Path, error=CeremonyError, step: str) -> None:
    missing = [p.name for p in paths if not p.exists()]
    if missing:
        raise error(f"{step} did not produce its outputs", step=step, missing=missing)


class CircuitBuilder:
    def __init__(
        self,
        store: ArtifactStore,
        toolchain: Toolchain,
        *,
        sources_dir: Union[str, Path],
        contributions: int = 1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if contributions < 1:
            raise CeremonyError("at least one ceremony contribution is required")
        self.store = store
        self.toolchain = toolchain
        self.sources_dir = Path(sources_dir)
        self.contributions = contributions
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, **toolchain_kwargs) -> "CircuitBuilder":
        zk = settings.zk
        return cls(
            ArtifactStore(zk.artifacts_dir),
            Toolchain.from_settings(zk, **toolchain_kwargs),
            sources_dir=zk.sources_dir,
            contributions=zk.ceremony_contributions,
        )

    def source_path(self, spec: CircuitSpec) -> Path:
        return self.sources_dir / spec.source

    # Public API ---------------------------------------------------------------

    def build(
        self,
        circuit_id: Union[str, CircuitId],
        constraint_tier: Optional[int] = None,
        contribution_name: Optional[str] = None,
        *,
        rebuild: bool = False,
    ) -> BuildResult:
        spec = circuit_spec(circuit_id)
        cid = spec.circuit_id.value
        tier = int(constraint_tier or spec.constraint_tier)
        name = contribution_name or spec.ceremony_name
        source = self.source_path(spec)
        if not source.exists():
            raise CompileError("circuit source not found", circuit_id=cid, source=str(source))
        digest = _sha256_file(source)

        if rebuild:
            self.store.clean(cid)
        else:
            manifest = self.store.read_manifest(cid)
            if manifest is None:
                # Artifacts without a manifest cannot be tied to a source digest.
                if self.store.paths(cid).any_present:
                    log.warning("circuits.build.unpinned_artifacts", circuit_id=cid)
                    self.store.clean(cid)
            elif manifest.get("source_sha256") != digest:
                raise CompileError(
                    "circuit source changed since its artifacts were built; use a new circuit version or rebuild",
                    circuit_id=cid,
                )

        art = self.store.paths(cid)
        ran: List[str] = []
        skipped: List[str] = []
        log.info("circuits.build.start", circuit_id=cid, tier=tier)

        if art.compiled:
            skipped.append("compile")
        else:
            self._compile(spec, source)
            ran.append("compile")

        ptau = self.store.ptau_path(tier)
        if ptau.exists():
            skipped.append("setup")
        else:
            self._universal_setup(spec, tier, name)
            ran.append("setup")

        # Fresh constraints invalidate any keys left over from a partial build.
        if art.keys_ready and "compile" not in ran:
            skipped.append("keys")
        else:
            self._circuit_keys(spec, ptau, name)
            ran.append("keys")

        if ran or self.store.read_manifest(cid) is None:
            self.store.write_manifest(
                cid,
                {
                    "circuit_id": cid,
                    "source_sha256": digest,
                    "constraint_tier": tier,
                    "contribution_name": name,
                    "contributions": self.contributions,
                    "built_at": int(self._clock()),
                    "builder_version": __version__,
                },
            )
        log.info("circuits.build.done", circuit_id=cid, ran=ran, skipped=skipped)
        return BuildResult(cid, art.zkey, art.vkey, tuple(ran), tuple(skipped))

    def build_all(self, *, rebuild: bool = False) -> Dict[str, BuildResult]:
        return {cid.value: self.build(cid, rebuild=rebuild) for cid in CIRCUITS}

    def status(self) -> List[Dict[str, Any]]:
        return [self.store.status(cid) for cid in CIRCUITS]

    def clean(self, circuit_id: Union[str, CircuitId]) -> int:
        return self.store.clean(circuit_id)

    # Steps --------------------------------------------------------------------

    def _compile(self, spec: CircuitSpec, source: Path) -> None:
        cid = spec.circuit_id.value
        art = self.store.paths(cid)
        with self.store.scratch(cid) as tmp:
            self.toolchain.compile(source, tmp)
            r1cs = tmp / f"{cid}.r1cs"
            wasm = tmp / f"{cid}_js" / f"{cid}.wasm"
            _require(r1cs, wasm, error=CompileError, step="compile")
            self.store.publish(r1cs, art.r1cs)
            self.store.publish(wasm, art.wasm)

    def _universal_setup(self, spec: CircuitSpec, tier: int, name: str) -> None:
        with self.store.scratch(spec.circuit_id) as tmp:
            current = tmp / "pot_0000.ptau"
            self.toolchain.ptau_new(tier, current)
            _require(current, step="ptau_new")
            for i in range(1, self.contributions + 1):
                nxt = tmp / f"pot_{i:04d}.ptau"
                self.toolchain.ptau_contribute(current, nxt, f"{name} #{i}")
                _require(nxt, step="ptau_contribute")
                current = nxt
            final = tmp / f"pot{tier}_final.ptau"
            self.toolchain.ptau_prepare_phase2(current, final)
            _require(final, step="ptau_prepare")
            self.store.publish(final, self.store.ptau_path(tier))

    def _circuit_keys(self, spec: CircuitSpec, ptau: Path, name: str) -> None:
        cid = spec.circuit_id.value
        art = self.store.paths(cid)
        with self.store.scratch(cid) as tmp:
            z0 = tmp / f"{cid}_0000.zkey"
            self.toolchain.groth16_setup(art.r1cs, ptau, z0)
            _require(z0, step="groth16_setup")
            z1 = tmp / f"{cid}_final.zkey"
            self.toolchain.zkey_contribute(z0, z1, name)
            _require(z1, step="zkey_contribute")
            vk = tmp / f"{cid}_vkey.json"
            self.toolchain.export_verification_key(z1, vk)
            _require(vk, step="export_vkey")
            self._check_vk(spec, vk)
            self.store.publish(z1, art.zkey)
            self.store.publish(vk, art.vkey)

    def _check_vk(self, spec: CircuitSpec, vk_path: Path) -> None:
        try:
            with vk_path.open("r", encoding="utf-8") as fh:
                vk = normalize_groth16_vk(json.load(fh))
        except ValueError as e:
            raise CeremonyError("exported verification key is malformed", circuit_id=spec.circuit_id.value).with_cause(e)
        if vk["nPublic"] != spec.arity:
            raise CeremonyError(
                "verification key does not match the circuit's public signals",
                circuit_id=spec.circuit_id.value,
                expected=spec.arity,
                got=vk["nPublic"],
            )


__all__ = ["BuildResult", "CircuitBuilder"]
