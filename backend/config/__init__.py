"""Backend configuration module"""

from .llm_config import (
    LLMConfig,
    LLMProvider,
    load_llm_config,
)
from .sync_config import (
    MappingConfig,
    SyncConfig,
    load_mapping_config,
    load_sync_config,
)

__all__ = [
    "LLMConfig",
    "LLMProvider",
    "load_llm_config",
    "SyncConfig",
    "MappingConfig",
    "load_sync_config",
    "load_mapping_config",
]
