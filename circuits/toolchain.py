"""
circom / snarkjs command runner
===============================

Every external tool invocation of the build pipeline and the prover goes
through `Toolchain`, which:

- resolves the binaries (``circom``, ``snarkjs``) and fails fast when absent,
- runs them with a timeout and captured output,
- turns a failure into the caller's typed error (CompileError for circom,
  CeremonyError for setup steps, ProvingFailed for ``groth16 fullprove``),
  including the tail of stderr for diagnosis.

The actual process spawning is an injectable `CommandRunner` so the pipeline
can be exercised without the Node toolchain installed.

Entropy
-------
Every ceremony contribution gets its own entropy string. `Toolchain` checks
that it carries at least 32 bytes of hex and was never used before in this
process; anything else is a CeremonyError, because a contribution without
real entropy voids the ceremony.
"""

from __future__ import annotations

import secrets
import shutil
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Set, Type

from core.errors import CeremonyError, CompileError, ProvingFailed, VeridityError
from core.logging import get_logger

log = get_logger(__name__)

MIN_ENTROPY_BYTES = 32
_STDERR_TAIL = 2000


class CommandRunner(Protocol):
    def __call__(
        self, argv: Sequence[str], *, cwd: Optional[Path] = None, timeout: Optional[float] = None
    ) -> subprocess.CompletedProcess: ...


def subprocess_runner(
    argv: Sequence[str], *, cwd: Optional[Path] = None, timeout: Optional[float] = None
) -> subprocess.CompletedProcess:
    return subprocess.run(
        list(argv),
        cwd=str(cwd) if cwd else None,
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )


def default_entropy() -> str:
    return secrets.token_hex(MIN_ENTROPY_BYTES)


class Toolchain:
    def __init__(
        self,
        *,
        circom_bin: str = "circom",
        snarkjs_bin: str = "snarkjs",
        include_dirs: Sequence[Path] = (),
        timeout: Optional[float] = 900.0,
        runner: Optional[CommandRunner] = None,
        entropy: Callable[[], str] = default_entropy,
        which: Callable[[str], Optional[str]] = shutil.which,
    ) -> None:
        self.circom_bin = circom_bin
        self.snarkjs_bin = snarkjs_bin
        self.include_dirs = [Path(p) for p in include_dirs]
        self.timeout = timeout
        self._runner: CommandRunner = runner or subprocess_runner
        self._entropy = entropy
        self._which = which
        self._used_entropy: Set[str] = set()

    @classmethod
    def from_settings(cls, zk_settings, **kwargs) -> "Toolchain":
        include = [zk_settings.circomlib_dir] if zk_settings.circomlib_dir else []
        return cls(
            circom_bin=zk_settings.circom_bin,
            snarkjs_bin=zk_settings.snarkjs_bin,
            include_dirs=include,
            timeout=zk_settings.command_timeout,
            **kwargs,
        )

    # Plumbing -----------------------------------------------------------------

    def _resolve(self, binary: str, error: Type[VeridityError]) -> str:
        path = self._which(binary)
        if not path:
            raise error(f"required tool not found on PATH: {binary}", tool=binary)
        return path

    def _run(self, argv: List[str], error: Type[VeridityError], *, step: str, cwd: Optional[Path] = None) -> None:
        log.info("circuits.toolchain.run", step=step, tool=Path(argv[0]).name)
        try:
            proc = self._runner(argv, cwd=cwd, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise error(f"{step} timed out", step=step, timeout=self.timeout).with_cause(e)
        except OSError as e:
            raise error(f"{step} could not start", step=step).with_cause(e)
        if proc.returncode != 0:
            tail = (proc.stderr or proc.stdout or "")[-_STDERR_TAIL:]
            log.error("circuits.toolchain.failed", step=step, returncode=proc.returncode)
            raise error(f"{step} failed", step=step, returncode=proc.returncode, stderr=tail)

    def _snarkjs(self, error: Type[VeridityError], step: str, *args: str) -> None:
        self._run([self._resolve(self.snarkjs_bin, error), *args], error, step=step)

    def contribution_entropy(self) -> str:
        e = self._entropy()
        try:
            raw = bytes.fromhex(e)
        except (TypeError, ValueError):
            raw = b""
        if len(raw) < MIN_ENTROPY_BYTES:
            raise CeremonyError("ceremony contribution requires at least 32 bytes of entropy")
        if e in self._used_entropy:
            raise CeremonyError("ceremony entropy was reused")
        self._used_entropy.add(e)
        return e

    # circom -------------------------------------------------------------------

    def compile(self, source: Path, out_dir: Path) -> None:
        """circom <source> --r1cs --wasm -o <out_dir> [-l <include>...]"""
        if not source.exists():
            raise CompileError("circuit source not found", source=str(source))
        argv = [self._resolve(self.circom_bin, CompileError), str(source), "--r1cs", "--wasm", "-o", str(out_dir)]
        for inc in self.include_dirs:
            argv += ["-l", str(inc)]
        self._run(argv, CompileError, step="compile")

    # powers of tau (universal, per tier) ---------------------------------------

    def ptau_new(self, tier: int, out: Path) -> None:
        self._snarkjs(CeremonyError, "ptau_new", "powersoftau", "new", "bn128", str(int(tier)), str(out))

    def ptau_contribute(self, inp: Path, out: Path, name: str) -> None:
        self._snarkjs(
            CeremonyError,
            "ptau_contribute",
            "powersoftau",
            "contribute",
            str(inp),
            str(out),
            f"--name={name}",
            f"-e={self.contribution_entropy()}",
        )

    def ptau_prepare_phase2(self, inp: Path, out: Path) -> None:
        self._snarkjs(CeremonyError, "ptau_prepare", "powersoftau", "prepare", "phase2", str(inp), str(out))

    # circuit-specific keys -----------------------------------------------------

    def groth16_setup(self, r1cs: Path, ptau: Path, out: Path) -> None:
        self._snarkjs(CeremonyError, "groth16_setup", "groth16", "setup", str(r1cs), str(ptau), str(out))

    def zkey_contribute(self, inp: Path, out: Path, name: str) -> None:
        self._snarkjs(
            CeremonyError,
            "zkey_contribute",
            "zkey",
            "contribute",
            str(inp),
            str(out),
            f"--name={name}",
            f"-e={self.contribution_entropy()}",
        )

    def export_verification_key(self, zkey: Path, out: Path) -> None:
        self._snarkjs(CeremonyError, "export_vkey", "zkey", "export", "verificationkey", str(zkey), str(out))

    # proving -------------------------------------------------------------------

    def fullprove(self, input_json: Path, wasm: Path, zkey: Path, proof_out: Path, public_out: Path) -> None:
        self._snarkjs(
            ProvingFailed,
            "fullprove",
            "groth16",
            "fullprove",
            str(input_json),
            str(wasm),
            str(zkey),
            str(proof_out),
            str(public_out),
        )


__all__ = ["CommandRunner", "subprocess_runner", "default_entropy", "MIN_ENTROPY_BYTES", "Toolchain"]
