"""Backend configuration module"""

from .extraction_config import ExtractionConfig, load_extraction_config
from .sync_config import SyncConfig, load_sync_config

__all__ = [
    "ExtractionConfig",
    "SyncConfig",
    "load_extraction_config",
    "load_sync_config",
]
