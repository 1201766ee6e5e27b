"""Configuration models for TimeSync.

All settings are immutable. A running service is reconfigured by handing it
a new settings value, which it picks up at the start of its next round.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TIMESYNC_CONFIG"
PEERS_ENV_VAR = "TIMESYNC_PEERS"
DEBUG_ENV_VAR = "TIMESYNC_DEBUG"

MIN_UPDATE_INTERVAL = 1


class SyncPolicy(BaseModel):
    """Correction policy applied after each polling round. Thresholds are in milliseconds."""

    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)

    update_interval: float = Field(300, description="Seconds between polling rounds, clamped to >= 1")
    max_allowed_phase_offset: float = Field(40.0, ge=0, description="Dead-band in milliseconds")
    max_pos_phase_correction: float = Field(
        5000.0, ge=0, description="Warn when a positive correction exceeds this (ms)")
    max_neg_phase_correction: float = Field(
        5000.0, ge=0, description="Warn when a negative correction exceeds this (ms)")
    local_bias: float = Field(0.0, description="Static bias added to every measured offset (ms)")

    @field_validator("update_interval")
    @classmethod
    def _clamp_update_interval(cls, value: float) -> float:
        return max(value, MIN_UPDATE_INTERVAL)


class NtpClientSettings(BaseModel):
    """Peers to poll and how to reach them."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    peers: Tuple[str, ...] = Field(("pool.ntp.org",), description="Hostnames or host:port entries")
    port: int = Field(123, ge=1, le=65535, description="Default NTP port")
    timeout: float = Field(500.0, gt=0, description="Per-peer query timeout in milliseconds")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000.0


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = Field("INFO", description="Root log level")
    debug: bool = Field(False, description="Enable call tracing of selection and correction")

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level


class TimeSyncSettings(BaseModel):
    """Complete configuration of a TimeSync service."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ntp_client: NtpClientSettings = Field(default_factory=NtpClientSettings)
    policy: SyncPolicy = Field(default_factory=SyncPolicy)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def with_policy(self, **changes) -> "TimeSyncSettings":
        """New settings value with some policy fields replaced (validated)."""
        policy = SyncPolicy.model_validate({**self.policy.model_dump(), **changes})
        return self.model_copy(update={"policy": policy})


def _load_yaml(config_path: Path) -> dict:
    """Load configuration from YAML file"""
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {config_path} must contain a mapping at the top level")
    return data


def _apply_env_overrides(data: dict) -> dict:
    peers = os.environ.get(PEERS_ENV_VAR)
    if peers:
        ntp_client = dict(data.get("ntp_client") or {})
        ntp_client["peers"] = [p.strip() for p in peers.split(",") if p.strip()]
        data["ntp_client"] = ntp_client

    debug = os.environ.get(DEBUG_ENV_VAR)
    if debug is not None:
        logging_section = dict(data.get("logging") or {})
        logging_section["debug"] = debug.lower() == "true"
        data["logging"] = logging_section

    return data


def load_settings(config_path: Optional[Union[str, Path]] = None) -> TimeSyncSettings:
    """
    Build settings from a YAML file plus environment overrides.

    Args:
        config_path: YAML file; falls back to $TIMESYNC_CONFIG, then to defaults

    Returns:
        Validated, immutable settings

    Raises:
        ConfigurationError: file unreadable or values invalid
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR)

    data = {}
    if config_path:
        data = _load_yaml(Path(config_path))
        logger.debug(f"Loaded configuration from {config_path}")

    data = _apply_env_overrides(data)

    try:
        return TimeSyncSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
