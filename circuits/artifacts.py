"""
Filesystem artifact store for compiled circuits and their keys.

Layout (all under ``root``):

    ptau/pot<tier>_final.ptau             universal setup, shared per tier
    <circuit>/<circuit>.r1cs              compiled constraints
    <circuit>/<circuit>.wasm              witness program
    <circuit>/<circuit>_final.zkey        proving key
    <circuit>/<circuit>_vkey.json         verification key (readiness marker)
    <circuit>/manifest.json               source digest, tier, build time
    <circuit>/.scratch-*/                 transient build directories

- Atomic writes via temp files in the destination directory + os.replace;
  a crash never leaves a truncated key in place.
- The verification key is published last; its presence means "ready".
- Parsed verification keys are cached per (path, mtime) so a rebuilt key is
  picked up without a restart.

Public API:
  - paths(circuit_id) -> CircuitArtifacts
  - ptau_path(tier) -> Path
  - publish(src, dest) / write_json(dest, obj)
  - scratch(circuit_id) -> context manager yielding a temp dir (always removed)
  - read_manifest / write_manifest
  - load_verification_key(circuit_id) -> dict | None
  - status(circuit_id) -> dict
  - clean(circuit_id) -> int
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple, Union

from core.logging import get_logger
from zk.adapters.snarkjs_loader import normalize_groth16_vk
from zk.claims import CircuitId, circuit_spec

log = get_logger(__name__)


@dataclass(frozen=True)
class CircuitArtifacts:
    circuit_id: str
    directory: Path
    r1cs: Path
    wasm: Path
    zkey: Path
    vkey: Path
    manifest: Path

    @property
    def compiled(self) -> bool:
        return self.r1cs.exists() and self.wasm.exists()

    @property
    def keys_ready(self) -> bool:
        return self.zkey.exists() and self.vkey.exists()

    @property
    def any_present(self) -> bool:
        return any(p.exists() for p in (self.r1cs, self.wasm, self.zkey, self.vkey))

    @property
    def can_prove(self) -> bool:
        return self.wasm.exists() and self.zkey.exists()

    def missing_for_proving(self) -> list:
        return [p.name for p in (self.wasm, self.zkey) if not p.exists()]


class ArtifactStore:
    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser().resolve()
        self._vk_cache: Dict[Path, Tuple[int, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    # Layout -------------------------------------------------------------------

    def paths(self, circuit_id: Union[str, CircuitId]) -> CircuitArtifacts:
        cid = circuit_spec(circuit_id).circuit_id.value
        d = self.root / cid
        return CircuitArtifacts(
            circuit_id=cid,
            directory=d,
            r1cs=d / f"{cid}.r1cs",
            wasm=d / f"{cid}.wasm",
            zkey=d / f"{cid}_final.zkey",
            vkey=d / f"{cid}_vkey.json",
            manifest=d / "manifest.json",
        )

    def ptau_path(self, tier: int) -> Path:
        return self.root / "ptau" / f"pot{int(tier)}_final.ptau"

    # Atomic writes ------------------------------------------------------------

    def publish(self, src: Path, dest: Path) -> Path:
        """
        Move a finished file into its final location atomically.

        The file is first copied next to `dest` (same filesystem), fsynced and
        then os.replace'd, so readers see either the old file or the new one.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", dir=str(dest.parent))
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as out, open(src, "rb") as inp:
                shutil.copyfileobj(inp, out, 1 << 20)
                out.flush()
                os.fsync(out.fileno())
            os.replace(tmp, dest)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        return dest

    def write_json(self, dest: Path, obj: Any) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", dir=str(dest.parent))
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as out:
                json.dump(obj, out, indent=2, sort_keys=True)
                out.flush()
                os.fsync(out.fileno())
            os.replace(tmp, dest)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        return dest

    @contextmanager
    def scratch(self, circuit_id: Union[str, CircuitId]) -> Iterator[Path]:
        """Temporary build directory beside the circuit's artifacts; removed on exit."""
        d = self.paths(circuit_id).directory
        d.mkdir(parents=True, exist_ok=True)
        tmp = Path(tempfile.mkdtemp(prefix=".scratch-", dir=str(d)))
        try:
            yield tmp
        finally:
            shutil.rmtree(tmp, ignore_errors=True)

    # Manifest -----------------------------------------------------------------

    def read_manifest(self, circuit_id: Union[str, CircuitId]) -> Optional[Dict[str, Any]]:
        p = self.paths(circuit_id).manifest
        if not p.exists():
            return None
        with p.open("r", encoding="utf-8") as fh:
            return json.load(fh)

    def write_manifest(self, circuit_id: Union[str, CircuitId], manifest: Dict[str, Any]) -> Path:
        return self.write_json(self.paths(circuit_id).manifest, manifest)

    # Verification keys --------------------------------------------------------

    def load_verification_key(self, circuit_id: Union[str, CircuitId]) -> Optional[Dict[str, Any]]:
        """
        Return the normalized verification key, or None when it is absent.

        A present-but-unparseable key raises ValueError: that is corruption,
        not absence, and must not silently enable any fallback.
        """
        p = self.paths(circuit_id).vkey
        try:
            mtime = p.stat().st_mtime_ns
        except FileNotFoundError:
            return None
        with self._lock:
            hit = self._vk_cache.get(p)
            if hit is not None and hit[0] == mtime:
                return hit[1]
        with p.open("r", encoding="utf-8") as fh:
            vk = normalize_groth16_vk(json.load(fh))
        with self._lock:
            self._vk_cache[p] = (mtime, vk)
        return vk

    # Status / housekeeping ----------------------------------------------------

    def status(self, circuit_id: Union[str, CircuitId]) -> Dict[str, Any]:
        a = self.paths(circuit_id)
        spec = circuit_spec(circuit_id)
        return {
            "circuit_id": a.circuit_id,
            "compiled": a.compiled,
            "setup": self.ptau_path(spec.constraint_tier).exists(),
            "ready": a.keys_ready,
            "files": {
                "r1cs": a.r1cs.exists(),
                "wasm": a.wasm.exists(),
                "zkey": a.zkey.exists(),
                "vkey": a.vkey.exists(),
            },
        }

    def clean(self, circuit_id: Union[str, CircuitId]) -> int:
        """Remove every artifact of one circuit (the shared ptau is kept)."""
        a = self.paths(circuit_id)
        if not a.directory.exists():
            return 0
        n = sum(1 for p in a.directory.rglob("*") if p.is_file())
        shutil.rmtree(a.directory)
        with self._lock:
            self._vk_cache.pop(a.vkey, None)
        log.info("circuits.artifacts.cleaned", circuit_id=a.circuit_id, files=n)
        return n


__all__ = ["CircuitArtifacts", "ArtifactStore"]
