"""
kota-governor keeps a coding assistant's context window small while giving it
structured code intelligence from a KotaDB subprocess.

The public API is resolved lazily through `__getattr__`, so importing the
package does not pull in the MCP SDK or LangChain until a session, client or
pruning helper is actually used.
"""

from importlib import import_module
from typing import Any, Dict, Tuple

__all__ = [
    "KotaSession",
    "KotaMcpClient",
    "KotaConfig",
    "SessionState",
    "load_config",
    "prune_messages",
    "compute_adaptive_settings",
    "ensure_indexed",
    "write_blob",
    "evict_blobs",
    "call_budgeted",
    "configure_logging",
]


_ATTR_MODULE_MAP: Dict[str, Tuple[str, str]] = {
    "KotaSession": ("session", "KotaSession"),
    "KotaMcpClient": ("client.mcp_client", "KotaMcpClient"),
    "KotaConfig": ("config.settings", "KotaConfig"),
    "SessionState": ("state", "SessionState"),
    "load_config": ("config.settings", "load_config"),
    "prune_messages": ("pruning", "prune_messages"),
    "compute_adaptive_settings": ("pruning", "compute_adaptive_settings"),
    "ensure_indexed": ("indexing", "ensure_indexed"),
    "write_blob": ("blobs", "write_blob"),
    "evict_blobs": ("blobs", "evict_blobs"),
    "call_budgeted": ("tools.invoker", "call_budgeted"),
    "configure_logging": ("logging_utils", "configure_logging"),
}


def __getattr__(name: str) -> Any:
    try:
        module_name, attribute = _ATTR_MODULE_MAP[name]
    except KeyError as exc:  # pragma: no cover - guard against typos
        raise AttributeError(f"module 'kota_governor' has no attribute {name!r}") from exc

    module = import_module(f".{module_name}", __name__)
    value = getattr(module, attribute)
    globals()[name] = value  # Cache for future lookups
    return value
