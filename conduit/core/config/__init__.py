"""
Configuration resolution for the conduit pipeline.
"""

from .config_loader import load_config_file
from .resolver import OPTIONS, REQUIRED, ConfigOption, resolve, resolve_config

__all__ = [
    "ConfigOption",
    "OPTIONS",
    "REQUIRED",
    "resolve",
    "resolve_config",
    "load_config_file",
]
