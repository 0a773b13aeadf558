from __future__ import annotations
"""
haunti.config — configuration for the settlement layer

Covers:
- Stake minimums per pool, lockup period and the APY accrual window
- Slashing magnitude (basis points, 10_000 = 100%) and forfeiture destination
- Reward split of a completed task between provider / stakers / treasury
- Task limits (reward bounds, deadline horizon, claim window)
- Retry policy for transient failures (orchestrator only)
- Ledger / storage wiring (confirmation timeout, treasury, blob store, circuits file)

Environment overrides (all optional; sensible defaults provided):

  # Stake (token base units; seconds)
  HAUNTI_MIN_STAKE_GPU=1000000
  HAUNTI_MIN_STAKE_VALIDATOR=5000000
  HAUNTI_MIN_STAKE_TRAINER=2000000
  HAUNTI_LOCKUP_PERIOD_SECS=86400
  HAUNTI_APY_WINDOW_SECS=2592000

  # Slashing
  HAUNTI_SLASH_INVALID_PROOF_BPS=1000
  HAUNTI_FORFEIT_TO=owner            # owner | treasury

  # Reward split (basis points; must sum to 10000)
  HAUNTI_SPLIT_PROVIDER_BPS=9000
  HAUNTI_SPLIT_STAKER_BPS=1000
  HAUNTI_SPLIT_TREASURY_BPS=0

  # Task limits
  HAUNTI_MIN_REWARD=100000
  HAUNTI_MAX_REWARD=100000000000
  HAUNTI_MIN_TIME_LIMIT_SECS=300
  HAUNTI_MAX_TIME_LIMIT_SECS=2592000
  HAUNTI_CLAIM_WINDOW_SECS=3600

  # Retry
  HAUNTI_RETRY_ATTEMPTS=4
  HAUNTI_RETRY_BASE_DELAY=0.2
  HAUNTI_RETRY_MULTIPLIER=2.0
  HAUNTI_RETRY_MAX_DELAY=5.0
  HAUNTI_RETRY_JITTER=0.2

  # Ledger / storage
  HAUNTI_CONFIRM_TIMEOUT_SECS=30
  HAUNTI_PROOF_TIMEOUT_SECS=600
  HAUNTI_TREASURY_ADDRESS=<64 hex>
  HAUNTI_BLOB_STORE=memory://        # memory:// | file:///path | https://gateway
  HAUNTI_CIRCUITS_FILE=/etc/haunti/circuits.yaml

You can also load from a JSON or YAML file via `HAUNTI_CONFIG_FILE=/path/to/config.(json|yaml|yml)`.
File values override defaults; environment overrides the file.
"""


import json
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

import yaml

from core.errors import ConfigurationError

POOLS = ("gpu", "validator", "trainer")
FORFEIT_DESTINATIONS = ("owner", "treasury")


# -------------------------- Data classes --------------------------


@dataclass
class StakeConfig:
    """Minimum stake per pool (base units), lockup and APY window (seconds)."""
    min_stake_gpu: int = 1_000_000
    min_stake_validator: int = 5_000_000
    min_stake_trainer: int = 2_000_000
    lockup_period_secs: int = 86_400            # 1 day
    apy_window_secs: int = 30 * 86_400          # accruals considered by get_apy
    # circuit name -> pool that may claim its tasks
    circuit_pools: Dict[str, str] = field(
        default_factory=lambda: {"inference": "gpu", "training": "trainer"}
    )
    default_pool: str = "gpu"

    def min_stake_for(self, pool: Any) -> int:
        name = getattr(pool, "value", pool)
        if name not in POOLS:
            raise ConfigurationError(f"unknown pool {name!r}.")
        return int(getattr(self, f"min_stake_{name}"))

    def pool_for(self, circuit: str) -> str:
        return self.circuit_pools.get(circuit, self.default_pool)

    def validate(self) -> None:
        for pool in POOLS:
            if self.min_stake_for(pool) < 0:
                raise ConfigurationError(f"min_stake_{pool} must be non-negative.")
        if self.lockup_period_secs < 0:
            raise ConfigurationError("lockup_period_secs must be non-negative.")
        if self.apy_window_secs <= 0:
            raise ConfigurationError("apy_window_secs must be positive.")
        for circuit, pool in {**self.circuit_pools, "*": self.default_pool}.items():
            if pool not in POOLS:
                raise ConfigurationError(f"unknown pool {pool!r} for circuit {circuit!r}.")


@dataclass
class SlashingParams:
    """Penalty for an invalid proof (basis points) and where a forfeited reward goes."""
    invalid_proof_bps: int = 1_000      # 10% of the claimant's position
    forfeit_to: str = "owner"

    @property
    def invalid_proof_fraction(self) -> float:
        return self.invalid_proof_bps / 10_000

    def validate(self) -> None:
        if not (0 <= self.invalid_proof_bps <= 10_000):
            raise ConfigurationError(f"invalid_proof_bps must be between 0 and 10000 (got {self.invalid_proof_bps}).")
        if self.forfeit_to not in FORFEIT_DESTINATIONS:
            raise ConfigurationError(f"forfeit_to must be one of {FORFEIT_DESTINATIONS} (got {self.forfeit_to!r}).")


@dataclass
class RewardSplit:
    """Split of a completed task's reward in basis points. Must sum to 10_000."""
    provider_bps: int = 9_000
    staker_bps: int = 1_000
    treasury_bps: int = 0

    def total_bps(self) -> int:
        return self.provider_bps + self.staker_bps + self.treasury_bps

    def split(self, reward: int) -> Dict[str, int]:
        """Integer split; rounding dust goes to the provider."""
        staker = reward * self.staker_bps // 10_000
        treasury = reward * self.treasury_bps // 10_000
        return {"provider": reward - staker - treasury, "staker": staker, "treasury": treasury}

    def validate(self) -> None:
        for name, v in (("provider_bps", self.provider_bps),
                        ("staker_bps", self.staker_bps),
                        ("treasury_bps", self.treasury_bps)):
            if not (0 <= v <= 10_000):
                raise ConfigurationError(f"{name} must be between 0 and 10000 (got {v}).")
        if self.total_bps() != 10_000:
            raise ConfigurationError(f"RewardSplit must sum to 10000 bps (got {self.total_bps()}).")


@dataclass
class TaskLimits:
    """Bounds checked at task creation, plus the per-claim submission window."""
    min_reward: int = 100_000
    max_reward: int = 100_000_000_000
    min_time_limit_secs: int = 300              # 5 minutes
    max_time_limit_secs: int = 2_592_000        # 30 days
    claim_window_secs: int = 3_600

    def validate(self) -> None:
        if self.min_reward <= 0 or self.max_reward < self.min_reward:
            raise ConfigurationError("reward bounds must satisfy 0 < min_reward <= max_reward.")
        if self.min_time_limit_secs <= 0 or self.max_time_limit_secs < self.min_time_limit_secs:
            raise ConfigurationError("time limits must satisfy 0 < min <= max.")
        if self.claim_window_secs <= 0:
            raise ConfigurationError("claim_window_secs must be positive.")


@dataclass
class RetryConfig:
    """Bounded exponential backoff for transient failures."""
    attempts: int = 4
    base_delay: float = 0.2
    multiplier: float = 2.0
    max_delay: float = 5.0
    jitter_fraction: float = 0.2

    def validate(self) -> None:
        if self.attempts < 1:
            raise ConfigurationError("retry attempts must be >= 1.")
        if self.base_delay < 0 or self.max_delay < 0 or self.multiplier < 1.0:
            raise ConfigurationError("retry delays must be non-negative and multiplier >= 1.")
        if not (0.0 <= self.jitter_fraction <= 1.0):
            raise ConfigurationError("jitter_fraction must be in [0.0, 1.0].")


@dataclass
class LedgerConfig:
    """Collaborator wiring."""
    confirm_timeout_secs: Optional[float] = 30.0
    proof_timeout_secs: Optional[float] = 600.0
    treasury_address: Optional[str] = None      # derived when unset
    blob_store: str = "memory://"
    circuits_file: Optional[str] = None

    def validate(self) -> None:
        for name in ("confirm_timeout_secs", "proof_timeout_secs"):
            v = getattr(self, name)
            if v is not None and v <= 0:
                raise ConfigurationError(f"{name} must be positive when set.")
        if self.treasury_address is not None and len(self.treasury_address) != 64:
            raise ConfigurationError("treasury_address must be 64 hex chars.")


@dataclass
class HauntiConfig:
    """Top-level configuration container."""
    stake: StakeConfig = field(default_factory=StakeConfig)
    slashing: SlashingParams = field(default_factory=SlashingParams)
    split: RewardSplit = field(default_factory=RewardSplit)
    tasks: TaskLimits = field(default_factory=TaskLimits)
    retry: RetryConfig = field(default_factory=RetryConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)

    def validate(self) -> "HauntiConfig":
        self.stake.validate()
        self.slashing.validate()
        self.split.validate()
        self.tasks.validate()
        self.retry.validate()
        self.ledger.validate()
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# -------------------------- Loaders --------------------------


def _getenv_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(str(v).replace("_", ""))
    except ValueError as e:
        raise ConfigurationError(f"Invalid int for {name}: {v!r}") from e


def _getenv_float(name: str, default: Optional[float]) -> Optional[float]:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    if v.strip().lower() in ("none", "off"):
        return None
    try:
        return float(v)
    except ValueError as e:
        raise ConfigurationError(f"Invalid float for {name}: {v!r}") from e


def _getenv_bps(name: str, default: int) -> int:
    bps = _getenv_int(name, default)
    if not (0 <= bps <= 10_000):
        raise ConfigurationError(f"{name} must be between 0 and 10000 bps (got {bps}).")
    return bps


def _getenv_str(name: str, default: Optional[str]) -> Optional[str]:
    v = os.getenv(name)
    return default if v is None or v == "" else v


def from_env(base: Optional[HauntiConfig] = None, prefix: str = "HAUNTI_") -> HauntiConfig:
    """
    Build a HauntiConfig from environment variables, optionally layering on top of `base`.
    """
    cfg = base or HauntiConfig()

    stake = replace(
        cfg.stake,
        min_stake_gpu=_getenv_int(f"{prefix}MIN_STAKE_GPU", cfg.stake.min_stake_gpu),
        min_stake_validator=_getenv_int(f"{prefix}MIN_STAKE_VALIDATOR", cfg.stake.min_stake_validator),
        min_stake_trainer=_getenv_int(f"{prefix}MIN_STAKE_TRAINER", cfg.stake.min_stake_trainer),
        lockup_period_secs=_getenv_int(f"{prefix}LOCKUP_PERIOD_SECS", cfg.stake.lockup_period_secs),
        apy_window_secs=_getenv_int(f"{prefix}APY_WINDOW_SECS", cfg.stake.apy_window_secs),
        circuit_pools=dict(cfg.stake.circuit_pools),
    )
    slashing = SlashingParams(
        invalid_proof_bps=_getenv_bps(f"{prefix}SLASH_INVALID_PROOF_BPS", cfg.slashing.invalid_proof_bps),
        forfeit_to=_getenv_str(f"{prefix}FORFEIT_TO", cfg.slashing.forfeit_to) or "owner",
    )
    split = RewardSplit(
        provider_bps=_getenv_bps(f"{prefix}SPLIT_PROVIDER_BPS", cfg.split.provider_bps),
        staker_bps=_getenv_bps(f"{prefix}SPLIT_STAKER_BPS", cfg.split.staker_bps),
        treasury_bps=_getenv_bps(f"{prefix}SPLIT_TREASURY_BPS", cfg.split.treasury_bps),
    )
    tasks = TaskLimits(
        min_reward=_getenv_int(f"{prefix}MIN_REWARD", cfg.tasks.min_reward),
        max_reward=_getenv_int(f"{prefix}MAX_REWARD", cfg.tasks.max_reward),
        min_time_limit_secs=_getenv_int(f"{prefix}MIN_TIME_LIMIT_SECS", cfg.tasks.min_time_limit_secs),
        max_time_limit_secs=_getenv_int(f"{prefix}MAX_TIME_LIMIT_SECS", cfg.tasks.max_time_limit_secs),
        claim_window_secs=_getenv_int(f"{prefix}CLAIM_WINDOW_SECS", cfg.tasks.claim_window_secs),
    )
    retry = RetryConfig(
        attempts=_getenv_int(f"{prefix}RETRY_ATTEMPTS", cfg.retry.attempts),
        base_delay=_getenv_float(f"{prefix}RETRY_BASE_DELAY", cfg.retry.base_delay),
        multiplier=_getenv_float(f"{prefix}RETRY_MULTIPLIER", cfg.retry.multiplier),
        max_delay=_getenv_float(f"{prefix}RETRY_MAX_DELAY", cfg.retry.max_delay),
        jitter_fraction=_getenv_float(f"{prefix}RETRY_JITTER", cfg.retry.jitter_fraction),
    )
    ledger = LedgerConfig(
        confirm_timeout_secs=_getenv_float(f"{prefix}CONFIRM_TIMEOUT_SECS", cfg.ledger.confirm_timeout_secs),
        proof_timeout_secs=_getenv_float(f"{prefix}PROOF_TIMEOUT_SECS", cfg.ledger.proof_timeout_secs),
        treasury_address=_getenv_str(f"{prefix}TREASURY_ADDRESS", cfg.ledger.treasury_address),
        blob_store=_getenv_str(f"{prefix}BLOB_STORE", cfg.ledger.blob_store) or "memory://",
        circuits_file=_getenv_str(f"{prefix}CIRCUITS_FILE", cfg.ledger.circuits_file),
    )

    new_cfg = HauntiConfig(stake=stake, slashing=slashing, split=split, tasks=tasks, retry=retry, ledger=ledger)
    return new_cfg.validate()


T = TypeVar("T")


def _section(cls: Type[T], data: Any, name: str) -> T:
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"config section {name!r} must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"unknown keys in config section {name!r}: {unknown}")
    return cls(**dict(data))


def from_mapping(data: Mapping[str, Any]) -> HauntiConfig:
    cfg = HauntiConfig(
        stake=_section(StakeConfig, data.get("stake"), "stake"),
        slashing=_section(SlashingParams, data.get("slashing"), "slashing"),
        split=_section(RewardSplit, data.get("split"), "split"),
        tasks=_section(TaskLimits, data.get("tasks"), "tasks"),
        retry=_section(RetryConfig, data.get("retry"), "retry"),
        ledger=_section(LedgerConfig, data.get("ledger"), "ledger"),
    )
    return cfg.validate()


def from_file(path: str | os.PathLike[str]) -> HauntiConfig:
    """
    Load configuration from a JSON or YAML file.
    """
    p = Path(path)
    if not p.exists():
        raise ConfigurationError("config file not found", details={"path": str(p)})

    text = p.read_text(encoding="utf-8")
    try:
        if p.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text or "{}")
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigurationError("config file is not valid YAML/JSON", details={"path": str(p)}, cause=e) from e
    if not isinstance(data, Mapping):
        raise ConfigurationError("config file must hold a mapping", details={"path": str(p)})
    return from_mapping(data)


def load() -> HauntiConfig:
    """
    Load configuration using the following precedence:
      1) File at $HAUNTI_CONFIG_FILE (JSON/YAML)
      2) Environment variables (HAUNTI_*), applied on top of defaults or file values
    """
    file_path = os.getenv("HAUNTI_CONFIG_FILE")
    base = from_file(file_path) if file_path else HauntiConfig()
    return from_env(base=base)


# -------------------------- Utilities --------------------------


def pretty(cfg: Optional[HauntiConfig] = None) -> str:
    """Return a human-readable JSON string of the current config."""
    obj = (cfg or load()).to_dict()
    return json.dumps(obj, indent=2, sort_keys=True)


__all__ = [
    "POOLS",
    "StakeConfig",
    "SlashingParams",
    "RewardSplit",
    "TaskLimits",
    "RetryConfig",
    "LedgerConfig",
    "HauntiConfig",
    "from_env",
    "from_mapping",
    "from_file",
    "load",
    "pretty",
]
