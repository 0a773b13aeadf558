import json

import pytest

from core.errors import ConfigurationError
from haunti import config as hconfig
from haunti.config import HauntiConfig, RewardSplit, SlashingParams, StakeConfig


def test_defaults_validate():
    cfg = HauntiConfig().validate()
    assert cfg.stake.min_stake_for("gpu") == 1_000_000
    assert cfg.slashing.invalid_proof_fraction == pytest.approx(0.1)
    assert cfg.slashing.forfeit_to == "owner"
    assert cfg.split.total_bps() == 10_000
    assert cfg.stake.pool_for("inference") == "gpu"
    assert cfg.stake.pool_for("training") == "trainer"
    assert cfg.stake.pool_for("something-else") == "gpu"


def test_reward_split_gives_dust_to_provider():
    split = RewardSplit(provider_bps=6_000, staker_bps=3_333, treasury_bps=667)
    parts = split.split(101)
    assert parts == {"provider": 62, "staker": 33, "treasury": 6}
    assert sum(parts.values()) == 101


@pytest.mark.parametrize(
    "section",
    [
        RewardSplit(provider_bps=9_000, staker_bps=500, treasury_bps=0),
        SlashingParams(invalid_proof_bps=10_001),
        SlashingParams(forfeit_to="burn"),
        StakeConfig(circuit_pools={"inference": "cpu"}),
        StakeConfig(apy_window_secs=0),
    ],
)
def test_invalid_sections_are_rejected(section):
    with pytest.raises(ConfigurationError):
        section.validate()


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("HAUNTI_MIN_STAKE_GPU", "1_000")
    monkeypatch.setenv("HAUNTI_SLASH_INVALID_PROOF_BPS", "2500")
    monkeypatch.setenv("HAUNTI_FORFEIT_TO", "treasury")
    monkeypatch.setenv("HAUNTI_CONFIRM_TIMEOUT_SECS", "off")
    monkeypatch.setenv("HAUNTI_BLOB_STORE", "file:///tmp/blobs")
    cfg = hconfig.from_env()
    assert cfg.stake.min_stake_gpu == 1_000
    assert cfg.slashing.invalid_proof_fraction == pytest.approx(0.25)
    assert cfg.slashing.forfeit_to == "treasury"
    assert cfg.ledger.confirm_timeout_secs is None
    assert cfg.ledger.blob_store == "file:///tmp/blobs"


def test_env_rejects_garbage(monkeypatch):
    monkeypatch.setenv("HAUNTI_MIN_REWARD", "lots")
    with pytest.raises(ConfigurationError):
        hconfig.from_env()
    monkeypatch.setenv("HAUNTI_MIN_REWARD", "1")
    monkeypatch.setenv("HAUNTI_SPLIT_STAKER_BPS", "20000")
    with pytest.raises(ConfigurationError):
        hconfig.from_env()


def test_yaml_file_then_env(tmp_path, monkeypatch):
    path = tmp_path / "haunti.yaml"
    path.write_text(
        "stake:\n  min_stake_gpu: 42\n  circuit_pools: {inference: validator}\n"
        "split:\n  provider_bps: 8000\n  staker_bps: 2000\n  treasury_bps: 0\n",
        encoding="utf-8",
    )
    cfg = hconfig.from_file(path)
    assert cfg.stake.min_stake_gpu == 42
    assert cfg.stake.pool_for("inference") == "validator"
    assert cfg.split.staker_bps == 2_000

    monkeypatch.setenv("HAUNTI_CONFIG_FILE", str(path))
    monkeypatch.setenv("HAUNTI_MIN_STAKE_GPU", "7")
    loaded = hconfig.load()
    assert loaded.stake.min_stake_gpu == 7
    # file values not overridden by env survive
    assert loaded.stake.pool_for("inference") == "validator"
    assert json.loads(hconfig.pretty(loaded))["stake"]["min_stake_gpu"] == 7


def test_file_errors(tmp_path):
    with pytest.raises(ConfigurationError):
        hconfig.from_file(tmp_path / "missing.json")
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        hconfig.from_file(bad)
    unknown = tmp_path / "unknown.json"
    unknown.write_text(json.dumps({"stake": {"min_stake_tpu": 1}}), encoding="utf-8")
    with pytest.raises(ConfigurationError, match="unknown keys"):
        hconfig.from_file(unknown)
