"""
Configuration management for Encore.

This module loads the engine configuration (cache tier capacities, timeouts,
prediction weights, crossfade timing and source providers) from TOML files.
The shipped `defaults.toml` is always loaded first; a user file is merged
over it section by section.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Path to the config directory
CONFIG_DIR = Path(__file__).parent


class DurableMode(Enum):
    """Retention strategy for the durable tier."""

    BOUNDED = "bounded"
    CURRENT_SONG = "current_song"


@dataclass
class NegativeCacheConfig:
    max_entries: int = 1000
    purge_fraction: float = 0.1
    persist: bool = True


@dataclass
class L0Config:
    max_entries: int = 3
    # Empty: derived from the web host and port.
    object_url_base: str = ""


@dataclass
class WarmConfig:
    ttl_seconds: float = 300.0


@dataclass
class HotConfig:
    max_entries: int = 50
    ttl_seconds: float = 1800.0


@dataclass
class DurableConfig:
    mode: DurableMode = DurableMode.BOUNDED
    max_bytes: int = 500 * 1024 * 1024
    max_age_days: float = 7.0
    cleanup_target_ratio: float = 0.8

    @property
    def max_age_seconds(self) -> float:
        return self.max_age_days * 24 * 60 * 60


@dataclass
class ResolverConfig:
    network_timeout_seconds: float = 4.0
    promotion_timeout_seconds: float = 30.0
    promote_to_l0: bool = True


@dataclass
class BreakerConfig:
    max_failures: int = 3
    reset_seconds: float = 30.0


@dataclass
class PredictionConfig:
    relevance_threshold: float = 0.3
    top_n: int = 5
    stagger_ms: int = 10
    max_jitter: float = 0.1
    genre_window: int = 5
    artist_window: int = 5
    history_size: int = 50
    persist: bool = True


@dataclass
class CrossfadeConfig:
    enabled: bool = True
    overlap_seconds: float = 3.0
    step_interval_ms: int = 20
    ready_timeout_seconds: float = 10.0
    volume: float = 1.0


@dataclass
class StorageConfig:
    state_dir: Path = Path("cache")
    database: str = "encore-blobs.sqlite3"

    @property
    def database_path(self) -> Path:
        if self.database == ":memory:":
            return Path(self.database)
        return self.state_dir / self.database


@dataclass
class WebConfig:
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 9100


@dataclass
class ProviderConfig:
    """One source provider entry (`[[providers]]` table)."""

    kind: str
    scheme: str = "*"
    base_url: str = ""
    endpoint: str = ""
    verify: bool = True
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class EncoreConfig:
    """Loaded engine configuration."""

    negative: NegativeCacheConfig = field(default_factory=NegativeCacheConfig)
    l0: L0Config = field(default_factory=L0Config)
    warm: WarmConfig = field(default_factory=WarmConfig)
    hot: HotConfig = field(default_factory=HotConfig)
    durable: DurableConfig = field(default_factory=DurableConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    prediction: PredictionConfig = field(default_factory=PredictionConfig)
    crossfade: CrossfadeConfig = field(default_factory=CrossfadeConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    web: WebConfig = field(default_factory=WebConfig)
    providers: list[ProviderConfig] = field(default_factory=list)

    @property
    def object_url_base(self) -> str:
        """Prefix for materialized object URLs, served by the web surface."""
        if self.l0.object_url_base:
            return self.l0.object_url_base
        host = self.web.host
        if host in ("0.0.0.0", "", "::"):
            host = "127.0.0.1"
        elif ":" in host:
            host = f"[{host}]"
        return f"http://{host}:{self.web.port}/blob/"


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    return value if isinstance(value, dict) else {}


def _parse_durable(data: dict[str, Any]) -> DurableConfig:
    mode_str = str(data.get("mode", DurableMode.BOUNDED.value))
    try:
        mode = DurableMode(mode_str)
    except ValueError:
        logger.warning("Unknown durable mode %r, falling back to bounded", mode_str)
        mode = DurableMode.BOUNDED

    return DurableConfig(
        mode=mode,
        max_bytes=int(data.get("max_bytes", 500 * 1024 * 1024)),
        max_age_days=float(data.get("max_age_days", 7.0)),
        cleanup_target_ratio=float(data.get("cleanup_target_ratio", 0.8)),
    )


def _parse_providers(items: object) -> list[ProviderConfig]:
    providers: list[ProviderConfig] = []
    if not isinstance(items, list):
        return providers

    for item in items:
        if not isinstance(item, dict) or "kind" not in item:
            logger.warning("Ignoring provider entry without kind: %r", item)
            continue
        providers.append(
            ProviderConfig(
                kind=str(item["kind"]),
                scheme=str(item.get("scheme", "*")),
                base_url=str(item.get("base_url", "")),
                endpoint=str(item.get("endpoint", "")),
                verify=bool(item.get("verify", True)),
                headers={str(k): str(v) for k, v in dict(item.get("headers", {})).items()},
            )
        )
    return providers


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge `override` into `base` one table level deep."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def parse_config(data: dict[str, Any]) -> EncoreConfig:
    """Build an EncoreConfig from already-parsed TOML data."""
    negative = _section(data, "negative")
    l0 = _section(data, "l0")
    warm = _section(data, "warm")
    hot = _section(data, "hot")
    resolver = _section(data, "resolver")
    breaker = _section(data, "breaker")
    prediction = _section(data, "prediction")
    crossfade = _section(data, "crossfade")
    storage = _section(data, "storage")
    web = _section(data, "web")

    return EncoreConfig(
        negative=NegativeCacheConfig(
            max_entries=int(negative.get("max_entries", 1000)),
            purge_fraction=float(negative.get("purge_fraction", 0.1)),
            persist=bool(negative.get("persist", True)),
        ),
        l0=L0Config(
            max_entries=int(l0.get("max_entries", 3)),
            object_url_base=str(l0.get("object_url_base", "")),
        ),
        warm=WarmConfig(ttl_seconds=float(warm.get("ttl_seconds", 300.0))),
        hot=HotConfig(
            max_entries=int(hot.get("max_entries", 50)),
            ttl_seconds=float(hot.get("ttl_seconds", 1800.0)),
        ),
        durable=_parse_durable(_section(data, "durable")),
        resolver=ResolverConfig(
            network_timeout_seconds=float(resolver.get("network_timeout_seconds", 4.0)),
            promotion_timeout_seconds=float(resolver.get("promotion_timeout_seconds", 30.0)),
            promote_to_l0=bool(resolver.get("promote_to_l0", True)),
        ),
        breaker=BreakerConfig(
            max_failures=int(breaker.get("max_failures", 3)),
            reset_seconds=float(breaker.get("reset_seconds", 30.0)),
        ),
        prediction=PredictionConfig(
            relevance_threshold=float(prediction.get("relevance_threshold", 0.3)),
            top_n=int(prediction.get("top_n", 5)),
            stagger_ms=int(prediction.get("stagger_ms", 10)),
            max_jitter=float(prediction.get("max_jitter", 0.1)),
            genre_window=int(prediction.get("genre_window", 5)),
            artist_window=int(prediction.get("artist_window", 5)),
            history_size=int(prediction.get("history_size", 50)),
            persist=bool(prediction.get("persist", True)),
        ),
        crossfade=CrossfadeConfig(
            enabled=bool(crossfade.get("enabled", True)),
            overlap_seconds=float(crossfade.get("overlap_seconds", 3.0)),
            step_interval_ms=int(crossfade.get("step_interval_ms", 20)),
            ready_timeout_seconds=float(crossfade.get("ready_timeout_seconds", 10.0)),
            volume=float(crossfade.get("volume", 1.0)),
        ),
        storage=StorageConfig(
            state_dir=Path(str(storage.get("state_dir", "cache"))),
            database=str(storage.get("database", "encore-blobs.sqlite3")),
        ),
        web=WebConfig(
            enabled=bool(web.get("enabled", True)),
            host=str(web.get("host", "127.0.0.1")),
            port=int(web.get("port", 9100)),
        ),
        providers=_parse_providers(data.get("providers", [])),
    )


def load_config(config_path: Path | None = None) -> EncoreConfig:
    """
    Load configuration from the shipped defaults and an optional user file.

    Args:
        config_path: Path to a user TOML file merged over the defaults.

    Returns:
        Loaded EncoreConfig instance.
    """
    defaults_path = CONFIG_DIR / "defaults.toml"
    logger.debug("Loading default config from %s", defaults_path)

    with defaults_path.open("rb") as f:
        data = tomllib.load(f)

    if config_path is not None:
        logger.debug("Loading user config from %s", config_path)
        with Path(config_path).open("rb") as f:
            data = _merge(data, tomllib.load(f))

    return parse_config(data)


# Global singleton instance (lazy loaded)
_config: EncoreConfig | None = None


def get_config() -> EncoreConfig:
    """
    Get the global configuration (lazy loaded singleton).

    Returns:
        The EncoreConfig instance.
    """
    global _config

    if _config is None:
        _config = load_config()

    return _config


def reload_config(config_path: Path | None = None) -> EncoreConfig:
    """
    Force reload of the global configuration.

    Returns:
        The newly loaded EncoreConfig instance.
    """
    global _config
    _config = load_config(config_path)
    return _config
