"""
circuits.tests helpers

`FakeToolchainRunner` plays circom and snarkjs: for every invocation it
writes the files the real tool would produce, so the build pipeline can run
end to end without Node.
"""

from __future__ import annotations

import json
import subprocess
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Sequence

from zk.tests import simulate_groth16


@lru_cache(maxsize=None)
def _vk_json(n_public: int) -> str:
    return json.dumps(simulate_groth16(list(range(1, n_public + 1)))[0])


class FakeToolchainRunner:
    def __init__(self, *, n_public: int = 5, fail_step: Optional[str] = None) -> None:
        self.n_public = n_public
        self.fail_step = fail_step
        self.calls: List[List[str]] = []

    def steps(self) -> List[str]:
        return [self._step(argv) for argv in self.calls]

    def entropies(self) -> List[str]:
        return [a[3:] for argv in self.calls for a in argv if a.startswith("-e=")]

    @staticmethod
    def _step(argv: Sequence[str]) -> str:
        if Path(argv[0]).name == "circom":
            return "compile"
        return " ".join(argv[1:3])

    def __call__(self, argv, *, cwd=None, timeout=None) -> subprocess.CompletedProcess:
        argv = list(argv)
        self.calls.append(argv)
        step = self._step(argv)
        if step == self.fail_step:
            return subprocess.CompletedProcess(argv, 1, "", f"{step}: boom")

        if step == "compile":
            source = Path(argv[1])
            out_dir = Path(argv[argv.index("-o") + 1])
            cid = source.stem
            (out_dir / f"{cid}.r1cs").write_bytes(b"r1cs" + source.read_bytes())
            (out_dir / f"{cid}_js").mkdir(parents=True, exist_ok=True)
            (out_dir / f"{cid}_js" / f"{cid}.wasm").write_bytes(b"\0asm")
        elif step in ("powersoftau contribute", "zkey contribute"):
            Path(argv[4]).write_bytes(Path(argv[3]).read_bytes() + b"+")
        elif step == "zkey export":
            Path(argv[-1]).write_text(_vk_json(self.n_public), encoding="utf-8")
        else:
            Path(argv[-1]).write_bytes(step.encode())
        return subprocess.CompletedProcess(argv, 0, "", "")
