"""
Pydantic-based configuration models for kota-governor.

The models here are the single source of truth for every tunable of a session:
how KotaDB is launched, how aggressively the conversation is pruned, where the
blob cache lives and whether the debug event log is written.
"""
from .settings import (
    DEFAULT_CONFIG,
    BlobsSection,
    ConfigSources,
    KotaConfig,
    KotaSection,
    LoadedConfig,
    LogSection,
    PruneSection,
    expand_tilde,
    load_config,
    merge_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "BlobsSection",
    "ConfigSources",
    "KotaConfig",
    "KotaSection",
    "LoadedConfig",
    "LogSection",
    "PruneSection",
    "expand_tilde",
    "load_config",
    "merge_config",
]
