from __future__ import annotations

import hashlib
import json
import secrets

import pytest

from circuits.artifacts import ArtifactStore
from circuits.builder import CircuitBuilder
from circuits.tests import FakeToolchainRunner
from circuits.toolchain import Toolchain
from core.errors import CeremonyError, CompileError, UnknownCircuit

ALL_STEPS = ("compile", "setup", "keys")


@pytest.fixture
def sources(tmp_path):
    d = tmp_path / "sources"
    d.mkdir()
    for cid in ("age_verification", "citizenship_verification"):
        (d / f"{cid}.circom").write_text(f"pragma circom 2.1.6;\n// {cid}\n", encoding="utf-8")
    return d


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "artifacts")


def _builder(store, sources, runner, *, which=None, entropy=None, contributions=1):
    kw = {}
    if entropy is not None:
        kw["entropy"] = entropy
    tc = Toolchain(runner=runner, which=which or (lambda b: f"/opt/bin/{b}"), **kw)
    return CircuitBuilder(store, tc, sources_dir=sources, contributions=contributions, clock=lambda: 1_700_000_000)


def test_build_publishes_keys_and_manifest(store, sources):
    runner = FakeToolchainRunner()
    res = _builder(store, sources, runner).build("age_verification")

    art = store.paths("age_verification")
    assert res.steps_run == ALL_STEPS
    assert res.verification_key == art.vkey
    assert art.compiled and art.keys_ready
    assert store.ptau_path(12).exists()
    assert store.load_verification_key("age_verification")["nPublic"] == 5

    manifest = store.read_manifest("age_verification")
    assert manifest["constraint_tier"] == 12
    assert manifest["contribution_name"] == "Veridity Age Verification"
    assert manifest["built_at"] == 1_700_000_000


def test_second_build_is_a_no_op(store, sources):
    runner = FakeToolchainRunner()
    b = _builder(store, sources, runner)
    b.build("age_verification")
    n = len(runner.calls)
    res = b.build("age_verification")
    assert res.steps_run == ()
    assert res.steps_skipped == ALL_STEPS
    assert len(runner.calls) == n


def test_every_contribution_gets_fresh_entropy(store, sources):
    runner = FakeToolchainRunner()
    _builder(store, sources, runner, contributions=3).build("age_verification")
    entropies = runner.entropies()
    assert len(entropies) == 4
    assert len(set(entropies)) == 4
    assert all(len(bytes.fromhex(e)) >= 32 for e in entropies)


def test_reused_entropy_aborts_the_ceremony(store, sources):
    fixed = secrets.token_hex(32)
    b = _builder(store, sources, FakeToolchainRunner(), entropy=lambda: fixed, contributions=2)
    with pytest.raises(CeremonyError):
        b.build("age_verification")
    assert not store.paths("age_verification").keys_ready


def test_weak_entropy_aborts_the_ceremony(store, sources):
    b = _builder(store, sources, FakeToolchainRunner(), entropy=lambda: "abcd")
    with pytest.raises(CeremonyError):
        b.build("age_verification")


def test_scratch_directories_are_removed(store, sources):
    runner = FakeToolchainRunner(fail_step="zkey contribute")
    with pytest.raises(CeremonyError) as ei:
        _builder(store, sources, runner).build("age_verification")
    assert ei.value.data["stderr"] == "zkey contribute: boom"
    d = store.paths("age_verification").directory
    assert not list(d.glob(".scratch-*"))
    assert not store.paths("age_verification").keys_ready


def test_changed_source_needs_rebuild(store, sources):
    runner = FakeToolchainRunner()
    b = _builder(store, sources, runner)
    b.build("age_verification")
    (sources / "age_verification.circom").write_text("pragma circom 2.1.6;\n// v2\n", encoding="utf-8")
    with pytest.raises(CompileError):
        b.build("age_verification")
    res = b.build("age_verification", rebuild=True)
    assert res.steps_run == ("compile", "keys")
    assert res.steps_skipped == ("setup",)


def test_artifacts_without_manifest_are_rebuilt(store, sources):
    runner = FakeToolchainRunner()
    b = _builder(store, sources, runner)
    b.build("age_verification")
    # keys published, then the process died before the manifest was written
    store.paths("age_verification").manifest.unlink()
    (sources / "age_verification.circom").write_text("pragma circom 2.1.6;\n// v2\n", encoding="utf-8")

    res = b.build("age_verification")
    assert res.steps_run == ("compile", "keys")
    manifest = store.read_manifest("age_verification")
    assert manifest["source_sha256"] == hashlib.sha256((sources / "age_verification.circom").read_bytes()).hexdigest()

    n = len(runner.calls)
    assert b.build("age_verification").steps_run == ()
    assert len(runner.calls) == n


def test_missing_circom_is_a_compile_error(store, sources):
    b = _builder(store, sources, FakeToolchainRunner(), which=lambda b: None if b == "circom" else b)
    with pytest.raises(CompileError) as ei:
        b.build("age_verification")
    assert ei.value.data["tool"] == "circom"


def test_compile_failure_publishes_nothing(store, sources):
    runner = FakeToolchainRunner(fail_step="compile")
    with pytest.raises(CompileError):
        _builder(store, sources, runner).build("citizenship_verification")
    assert not store.paths("citizenship_verification").compiled
    assert runner.steps() == ["compile"]


def test_vk_must_match_circuit_arity(store, sources):
    runner = FakeToolchainRunner(n_public=3)
    with pytest.raises(CeremonyError):
        _builder(store, sources, runner).build("age_verification")
    assert not store.paths("age_verification").vkey.exists()


def test_missing_source_and_unknown_circuit(store, sources):
    (sources / "citizenship_verification.circom").unlink()
    b = _builder(store, sources, FakeToolchainRunner())
    with pytest.raises(CompileError):
        b.build("citizenship_verification")
    with pytest.raises(UnknownCircuit):
        b.build("income_verification")


def test_tier_override_and_shared_ptau(store, sources):
    runner = FakeToolchainRunner()
    b = _builder(store, sources, runner)
    b.build("age_verification", 14)
    res = b.build("citizenship_verification")
    assert "setup" in res.steps_skipped


def test_status_and_clean(store, sources):
    b = _builder(store, sources, FakeToolchainRunner())
    b.build_all()
    rows = {r["circuit_id"]: r for r in b.status()}
    assert rows["age_verification"]["ready"] is True
    assert rows["citizenship_verification"]["files"]["vkey"] is True

    assert b.clean("age_verification") > 0
    rows = {r["circuit_id"]: r for r in b.status()}
    assert rows["age_verification"]["compiled"] is False
    assert rows["age_verification"]["setup"] is True
    assert b.clean("age_verification") == 0


def test_at_least_one_contribution(store, sources):
    with pytest.raises(CeremonyError):
        _builder(store, sources, FakeToolchainRunner(), contributions=0)


def test_build_result_is_json_friendly(store, sources):
    res = _builder(store, sources, FakeToolchainRunner()).build("age_verification")
    assert json.loads(json.dumps(res.to_dict()))["steps_run"] == list(ALL_STEPS)
