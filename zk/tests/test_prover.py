from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from circuits.artifacts import ArtifactStore
from circuits.toolchain import Toolchain
from core.errors import ArtifactsUnavailable, InvalidInput, ProvingFailed, UnknownCircuit
from zk.mock import MOCK_PROTOCOL
from zk.prover import MODE_GROTH16, MODE_MOCK, Prover
from zk.tests import simulate_groth16

NOW = 1_750_000_000
SECRET = (1 << 200) + 12345
ADULT = {"dateOfBirth": "1990-05-01", "identitySecret": str(SECRET)}


class FakeSnarkjs:
    """Stands in for ``snarkjs groth16 fullprove``; writes the output files it is given."""

    def __init__(self, public=None, *, returncode=0, proof=None):
        self.public = public
        self.returncode = returncode
        self.proof = proof
        self.calls = []

    def __call__(self, argv, *, cwd=None, timeout=None):
        self.calls.append(list(argv))
        input_json, proof_out, public_out = Path(argv[3]), Path(argv[6]), Path(argv[7])
        if self.returncode == 0:
            inputs = json.loads(input_json.read_text())
            public = self.public or ["1", "4242", "77", inputs["ageThreshold"], inputs["currentTimestamp"]]
            proof = self.proof or simulate_groth16([int(s) for s in public])[1]
            proof_out.write_text(json.dumps(proof))
            public_out.write_text(json.dumps(public))
        return subprocess.CompletedProcess(argv, self.returncode, "", "out of memory")


def _toolchain(runner):
    return Toolchain(runner=runner, which=lambda b: f"/usr/local/bin/{b}")


def _install_proving_artifacts(store, cid="age_verification"):
    art = store.paths(cid)
    art.directory.mkdir(parents=True, exist_ok=True)
    art.wasm.write_bytes(b"\0asm")
    art.zkey.write_bytes(b"zkey")


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "artifacts")


def test_mock_fallback_when_artifacts_missing(store, clock):
    prover = Prover(store, _toolchain(FakeSnarkjs()), allow_mock=True, clock=clock)
    out = prover.generate_proof("age_verification", ADULT, {"ageThreshold": 21})
    assert out.mode == MODE_MOCK
    assert out.proof["protocol"] == MOCK_PROTOCOL
    assert out.public_signals[0] == "1"
    assert out.public_signals[3] == "21"
    assert out.public_signals[4] == str(NOW)
    assert out.nullifier_hash == out.public_signals[1]
    assert out.to_dict()["circuitId"] == "age_verification"


def test_same_identity_same_nullifier_fresh_commitment(store, clock):
    prover = Prover(store, _toolchain(FakeSnarkjs()), allow_mock=True, clock=clock)
    a = prover.generate_proof("age_verification", ADULT)
    b = prover.generate_proof("age_verification", ADULT)
    assert a.nullifier_hash == b.nullifier_hash
    assert a.public_signals[2] != b.public_signals[2]


def test_holders_born_the_same_day_get_distinct_nullifiers(store, clock):
    prover = Prover(store, _toolchain(FakeSnarkjs()), allow_mock=True, clock=clock)
    alice = prover.generate_proof("age_verification", ADULT)
    bob = prover.generate_proof("age_verification", dict(ADULT, identitySecret=str(SECRET + 1)))
    assert alice.nullifier_hash != bob.nullifier_hash


def test_missing_artifacts_without_mock(store, clock):
    prover = Prover(store, _toolchain(FakeSnarkjs()), allow_mock=False, clock=clock)
    with pytest.raises(ArtifactsUnavailable) as ei:
        prover.generate_proof("age_verification", ADULT)
    assert set(ei.value.data["missing"]) == {"age_verification.wasm", "age_verification_final.zkey"}


def test_invalid_inputs_are_rejected_before_proving(store, clock):
    runner = FakeSnarkjs()
    prover = Prover(store, _toolchain(runner), allow_mock=True, clock=clock)
    with pytest.raises(InvalidInput):
        prover.generate_proof("age_verification", dict(ADULT, dateOfBirth=NOW + 3600))
    with pytest.raises(UnknownCircuit):
        prover.generate_proof("income_verification", {})
    assert runner.calls == []


def test_real_proof_via_snarkjs(store, clock):
    _install_proving_artifacts(store)
    runner = FakeSnarkjs()
    prover = Prover(store, _toolchain(runner), clock=clock)
    assert prover.is_real_available("age_verification")
    out = prover.generate_proof("age_verification", ADULT)
    assert out.mode == MODE_GROTH16
    assert out.nullifier_hash == "4242"
    assert runner.calls[0][1:3] == ["groth16", "fullprove"]
    assert Path(runner.calls[0][4]) == store.paths("age_verification").wasm
    # scratch space is gone
    assert not list(store.paths("age_verification").directory.glob(".scratch-*"))


def test_fullprove_failure_is_proving_failed(store, clock):
    _install_proving_artifacts(store)
    prover = Prover(store, _toolchain(FakeSnarkjs(returncode=1)), clock=clock)
    with pytest.raises(ProvingFailed) as ei:
        prover.generate_proof("age_verification", ADULT)
    assert ei.value.data["stderr"] == "out of memory"


def test_wrong_signal_count_is_proving_failed(store, clock):
    _install_proving_artifacts(store)
    prover = Prover(store, _toolchain(FakeSnarkjs(public=["1", "2", "3"])), clock=clock)
    with pytest.raises(ProvingFailed):
        prover.generate_proof("age_verification", ADULT)


def test_malformed_prover_output(store, clock):
    _install_proving_artifacts(store)
    prover = Prover(store, _toolchain(FakeSnarkjs(proof={"pi_a": []})), clock=clock)
    with pytest.raises(ProvingFailed):
        prover.generate_proof("age_verification", ADULT)


def test_from_settings_builds_a_thread_pool(settings):
    prover = Prover.from_settings(settings, toolchain=_toolchain(FakeSnarkjs()))
    try:
        assert prover.allow_mock is True
        assert prover.pool.kind == "thread"
        out = prover.generate_proof("citizenship_verification", {
            "citizenshipNumber": "12-01-75-01234",
            "district": 4,
            "merkleProof": ["0"] * 16,
            "merkleIndices": [1] * 16,
        }, {"merkleRoot": 5, "districtFilter": 4})
        assert out.public_signals[0] == "1"
        assert out.public_signals[3:] == ["5", "4"]
    finally:
        prover.pool.shutdown()


@pytest.mark.asyncio
async def test_async_generation_on_pool(store, clock):
    _install_proving_artifacts(store)
    from zk.pool import WorkerPool

    with WorkerPool(max_workers=1, default_timeout=30) as pool:
        prover = Prover(store, _toolchain(FakeSnarkjs()), pool=pool, clock=clock)
        out = await prover.agenerate_proof("age_verification", ADULT)
    assert out.mode == MODE_GROTH16
