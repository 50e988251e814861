"""
Configuration package.

This package contains environment loading, validation, and the chain variant
selector.
"""

from dexgate.config.config import Settings, load_seed_phrases
from dexgate.config.variants import VARIANTS, ChainVariant, get_variant

__all__ = [
    "Settings",
    "load_seed_phrases",
    "VARIANTS",
    "ChainVariant",
    "get_variant",
]
