from __future__ import annotations

import json

import pytest

from circuits.artifacts import ArtifactStore
from core.errors import ArtifactsUnavailable, ErrorCode
from zk.mock import mock_prove
from zk.pool import WorkerPool
from zk.tests import simulate_groth16
from zk.verifier import MODE_GROTH16, MODE_MOCK, Verifier
from zk.witness import SECONDS_PER_YEAR, build_witness

NOW = 1_750_000_000


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def verifier(store, clock):
    return Verifier(store, allow_mock=True, clock=clock)


def _age_proof(years: float, threshold: int = 18, now: int = NOW):
    w = build_witness(
        "age_verification",
        {"dateOfBirth": int(now - years * SECONDS_PER_YEAR) - 86400, "identitySecret": 1 << 130},
        {"ageThreshold": threshold},
        now=now,
    )
    return mock_prove(w)


# ---------------------------------------------------------------------------
# Mock backend
# ---------------------------------------------------------------------------


def test_adult_is_accepted(verifier):
    proof, signals = _age_proof(20)
    res = verifier.verify_proof("age_over_18", proof, signals)
    assert res.success, res
    assert res.mode == MODE_MOCK
    assert res.circuit_id == "age_verification"
    assert res.nullifier_hash == signals[1]
    assert res.to_dict()["publicSignals"] == signals


def test_minor_is_not_satisfied(verifier):
    proof, signals = _age_proof(10)
    assert signals[0] == "0"
    res = verifier.verify_proof("age_over_18", proof, signals)
    assert not res.success
    assert res.error_code == ErrorCode.CLAIM_NOT_SATISFIED.value


def test_threshold_must_match_claim(verifier):
    proof, signals = _age_proof(30, threshold=18)
    res = verifier.verify_proof("age_over_21", proof, signals)
    assert res.error_code == ErrorCode.CLAIM_NOT_SATISFIED.value


def test_stale_proof_is_rejected(verifier, clock):
    proof, signals = _age_proof(30)
    clock.advance(2 * 3600)
    res = verifier.verify_proof("age_over_18", proof, signals)
    assert res.error_code == ErrorCode.CLAIM_NOT_SATISFIED.value


def test_unknown_claim(verifier):
    proof, signals = _age_proof(30)
    res = verifier.verify_proof("age_over_65", proof, signals)
    assert res.error_code == ErrorCode.UNKNOWN_CLAIM_TYPE.value
    assert res.to_dict()["error"]["code"] == "UNKNOWN_CLAIM_TYPE"


def test_arity_mismatch(verifier):
    proof, signals = _age_proof(30)
    res = verifier.verify_proof("age_over_18", proof, signals[:-1])
    assert res.error_code == ErrorCode.SIGNAL_ARITY_MISMATCH.value


@pytest.mark.parametrize("bad", ["abc", "-1", str(2**254 * 2)])
def test_non_field_signal(verifier, bad):
    proof, signals = _age_proof(30)
    res = verifier.verify_proof("age_over_18", proof, [bad] + signals[1:])
    assert res.error_code == ErrorCode.MALFORMED_PROOF.value


def test_mock_proof_for_another_circuit(verifier):
    proof, signals = _age_proof(30)
    proof = dict(proof, circuit="citizenship_verification")
    res = verifier.verify_proof("age_over_18", proof, signals)
    assert res.error_code == ErrorCode.MALFORMED_PROOF.value


def test_citizenship_trusted_roots(store, clock):
    w = build_witness(
        "citizenship_verification",
        {
            "citizenshipNumber": "12-01-75-01234",
            "district": 3,
            "merkleProof": ["1"] * 16,
            "merkleIndices": [0] * 16,
        },
        {"merkleRoot": 99},
    )
    proof, signals = mock_prove(w)
    trusting = Verifier(store, allow_mock=True, trusted_merkle_roots=["99"], clock=clock)
    other = Verifier(store, allow_mock=True, trusted_merkle_roots=["0x64"], clock=clock)
    assert trusting.verify_proof("citizenship", proof, signals).success
    res = other.verify_proof("citizenship_verification", proof, signals)
    assert res.error_code == ErrorCode.CLAIM_NOT_SATISFIED.value


def test_missing_key_without_mock_raises(store, clock):
    v = Verifier(store, allow_mock=False, clock=clock)
    proof, signals = _age_proof(30)
    with pytest.raises(ArtifactsUnavailable):
        v.verify_proof("age_over_18", proof, signals)
    with pytest.raises(ArtifactsUnavailable):
        v.check_ready()


def test_corrupt_key_is_not_treated_as_absent(store, verifier):
    vkey = store.paths("age_verification").vkey
    vkey.parent.mkdir(parents=True)
    vkey.write_text("{not json", encoding="utf-8")
    proof, signals = _age_proof(30)
    with pytest.raises(ArtifactsUnavailable) as ei:
        verifier.verify_proof("age_over_18", proof, signals)
    assert ei.value.data["reason"] == "unreadable"


def test_check_ready_reports_modes(verifier):
    assert verifier.check_ready() == {"age_verification": MODE_MOCK, "citizenship_verification": MODE_MOCK}


def test_stats_count_outcomes(verifier):
    proof, signals = _age_proof(30)
    verifier.verify_proof("age_over_18", proof, signals)
    verifier.verify_proof("age_over_65", proof, signals)
    stats = verifier.stats()
    assert stats["total"] == 2
    assert stats["accepted"] == 1
    assert stats["UNKNOWN_CLAIM_TYPE"] == 1


def test_from_settings_uses_mock_flag(settings):
    v = Verifier.from_settings(settings)
    try:
        assert v.allow_mock is True
        assert v.store.root == settings.zk.artifacts_dir.resolve()
    finally:
        v.pool.shutdown()


# ---------------------------------------------------------------------------
# Groth16 backend (simulated keys)
# ---------------------------------------------------------------------------


def _install_vk(store, cid, vk):
    p = store.paths(cid).vkey
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(vk), encoding="utf-8")


def _real_signals(now=NOW, threshold=18):
    return ["1", "1111", "2222", str(threshold), str(now)]


@pytest.mark.slow
def test_groth16_proof_is_accepted_and_tampering_fails(store, clock):
    signals = _real_signals()
    vk, proof = simulate_groth16([int(s) for s in signals])
    _install_vk(store, "age_verification", vk)
    with WorkerPool(max_workers=2, default_timeout=120) as pool:
        v = Verifier(store, pool=pool, allow_mock=True, clock=clock)
        ok = v.verify_proof("age_over_18", proof, signals)
        assert ok.success and ok.mode == MODE_GROTH16
        assert ok.nullifier_hash == "1111"

        bad = v.verify_proof("age_over_18", proof, signals[:1] + ["1112"] + signals[2:])
        assert bad.error_code == ErrorCode.PAIRING_CHECK_FAILED.value


@pytest.mark.slow
def test_mock_proof_against_real_key_is_malformed(store, clock):
    signals = _real_signals()
    vk, _ = simulate_groth16([int(s) for s in signals])
    _install_vk(store, "age_verification", vk)
    v = Verifier(store, allow_mock=True, clock=clock)
    mock, mock_signals = _age_proof(30)
    res = v.verify_proof("age_over_18", mock, mock_signals)
    assert res.error_code == ErrorCode.MALFORMED_PROOF.value


@pytest.mark.slow
def test_batch_keeps_input_order(store, clock):
    signals = _real_signals()
    vk, proof = simulate_groth16([int(s) for s in signals])
    _install_vk(store, "age_verification", vk)
    items = [
        {"claimType": "age_over_18", "proof": proof, "publicSignals": signals},
        {"claimType": "age_over_65", "proof": proof, "publicSignals": signals},
        {"claimType": "age_over_18", "proof": proof, "publicSignals": signals[:-1] + [str(NOW + 1)]},
        {"claimType": "age_over_21", "proof": proof, "publicSignals": signals},
    ]
    with WorkerPool(max_workers=2, default_timeout=120) as pool:
        v = Verifier(store, pool=pool, allow_mock=False, clock=clock)
        out = v.verify_batch(items, window=2)
    assert [o.success for o in out] == [True, False, False, False]
    assert [o.error_code for o in out[1:]] == [
        ErrorCode.UNKNOWN_CLAIM_TYPE.value,
        ErrorCode.PAIRING_CHECK_FAILED.value,
        ErrorCode.CLAIM_NOT_SATISFIED.value,
    ]


@pytest.mark.slow
@pytest.mark.asyncio
async def test_async_verification(store, clock):
    signals = _real_signals()
    vk, proof = simulate_groth16([int(s) for s in signals])
    _install_vk(store, "age_verification", vk)
    with WorkerPool(max_workers=1, default_timeout=120) as pool:
        v = Verifier(store, pool=pool, clock=clock)
        res = await v.averify_proof("age_over_18", proof, signals)
    assert res.success
