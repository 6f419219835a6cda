"""Explorer configuration loaded from YAML with environment overrides."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from near_explorer.core.models import Network

ENV_NETWORK = "NEAR_EXPLORER_NETWORK"
ENV_STATE_PATH = "NEAR_EXPLORER_STATE_PATH"
ENV_PROXY_URL = "NEAR_EXPLORER_PROXY_URL"

DEFAULT_STATE_PATH = Path("~/.near-explorer/state.json")


class RetrySettings(BaseModel):
    """Per-provider retry budget."""

    max_attempts: int = Field(default=3, ge=1)
    initial_backoff: float = Field(default=0.1, ge=0)
    multiplier: float = Field(default=3.0, ge=1)
    max_backoff: float = Field(default=30.0, ge=0)


class SyncSettings(BaseModel):
    """
    Incremental sync and caching limits.

    Attributes
    ----------
    window : int
        Blocks scanned on the first transaction sync
    max_transactions : int
        Cap on cached transactions (newest kept)
    concurrency : int
        Blocks fetched concurrently per batch
    batch_delay : float
        Seconds between batches
    poll_interval : float
        Seconds between latest-block polls
    max_blocks : int
        Cap on cached blocks
    max_chunks : int
        Cap on cached chunks

    """

    window: int = Field(default=10, ge=1)
    max_transactions: int = Field(default=2000, ge=1)
    concurrency: int = Field(default=1, ge=1, le=4)
    batch_delay: float = Field(default=0.2, ge=0)
    poll_interval: float = Field(default=3.0, gt=0)
    max_blocks: int = Field(default=1000, ge=1)
    max_chunks: int = Field(default=2000, ge=1)


class ProxySettings(BaseModel):
    """CORS-bypass proxy used for remote endpoints."""

    enabled: bool = False
    url: str = "http://localhost:3001"


class ExplorerConfig(BaseModel):
    """
    Top-level explorer configuration.

    Attributes
    ----------
    network : Network | None
        Network to select on startup. Keeps the persisted selection if None.
    state_path : Path
        JSON file holding the provider registry
    request_timeout : float
        Timeout of one RPC attempt, in seconds
    probe_timeout : float
        Timeout of a health probe, in seconds
    round_robin : bool
        Spread successive calls across providers

    """

    network: Network | None = None
    state_path: Path = DEFAULT_STATE_PATH
    request_timeout: float = Field(default=30.0, gt=0)
    probe_timeout: float = Field(default=10.0, gt=0)
    round_robin: bool = False
    retry: RetrySettings = Field(default_factory=RetrySettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    proxy: ProxySettings = Field(default_factory=ProxySettings)


def _env_overrides(environ: dict[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if environ.get(ENV_NETWORK):
        overrides["network"] = environ[ENV_NETWORK]
    if environ.get(ENV_STATE_PATH):
        overrides["state_path"] = environ[ENV_STATE_PATH]
    if environ.get(ENV_PROXY_URL):
        overrides["proxy"] = {"enabled": True, "url": environ[ENV_PROXY_URL]}
    return overrides


def load_config(path: Path | str | None = None, environ: dict[str, str] | None = None) -> ExplorerConfig:
    """
    Load configuration from an optional YAML file and the environment.

    Parameters
    ----------
    path : Path | str | None
        YAML file. Defaults only if None.
    environ : dict[str, str] | None
        Environment mapping, ``os.environ`` if None

    Returns
    -------
    ExplorerConfig
        Validated configuration; environment values win over the file

    """
    data: dict[str, Any] = {}
    if path is not None:
        with open(Path(path).expanduser(), encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    overrides = _env_overrides(dict(os.environ) if environ is None else environ)
    if "proxy" in overrides and isinstance(data.get("proxy"), dict):
        overrides["proxy"] = {**data["proxy"], **overrides["proxy"]}
    data.update(overrides)
    return ExplorerConfig.model_validate(data)
