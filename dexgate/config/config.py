"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from dotenv import load_dotenv

from dexgate.config.variants import ChainVariant, get_variant
from dexgate.core.json_utils import loads
from dexgate.infra.logging_cfg import INFO, log_event

load_dotenv()


@dataclass(frozen=True)
class Settings:
    chain_node: str
    api_endpoint: str
    host: str
    port: int
    purge_timeout: float  # seconds; 0 disables purging of resolved operations
    seeds_path: str
    chain_variant: str
    tokens: Tuple[str, ...]
    http_timeout: float
    query_cache_ttl_ms: int
    block_poll_interval: float
    log_level: str
    log_file: str | None
    query_cache_max_entries: int = 256

    @property
    def variant(self) -> ChainVariant:
        return get_variant(self.chain_variant)

    @staticmethod
    def _tokens(variant_name: str) -> Tuple[str, ...]:
        raw = os.getenv("TOKENS")
        if not raw:
            try:
                return get_variant(variant_name).default_tokens
            except ValueError:
                return ()
        return tuple(t.strip().lower() for t in raw.split(",") if t.strip())

    @classmethod
    def load(cls) -> "Settings":
        def _int_env(key: str, default: int) -> int:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return int(raw)

        def _float_env(key: str, default: float) -> float:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return float(raw)

        variant_name = os.getenv("CHAIN_VARIANT", "equilibrium")
        cfg = cls(
            chain_node=os.getenv("CHAIN_NODE", "wss://devnet.genshiro.io"),
            api_endpoint=os.getenv("API_ENDPOINT", "https://apiv3.equilibrium.io/api"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_int_env("PORT", 3000),
            purge_timeout=_float_env("PURGE_TIMEOUT", 0.0),
            seeds_path=os.getenv("SEEDS_PATH", "./seeds.json"),
            chain_variant=variant_name,
            tokens=cls._tokens(variant_name),
            http_timeout=_float_env("HTTP_TIMEOUT", 10.0),
            query_cache_ttl_ms=_int_env("QUERY_CACHE_TTL_MS", 500),
            block_poll_interval=_float_env("BLOCK_POLL_INTERVAL", 2.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("LOG_FILE", "dexgate.log") or None,
            query_cache_max_entries=_int_env("QUERY_CACHE_MAX_ENTRIES", 256),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def _validate(self) -> None:
        get_variant(self.chain_variant)
        if self.purge_timeout < 0:
            raise ValueError("PURGE_TIMEOUT must be >= 0")
        if self.query_cache_ttl_ms <= 0:
            raise ValueError("QUERY_CACHE_TTL_MS must be > 0")
        if self.query_cache_max_entries <= 0:
            raise ValueError("QUERY_CACHE_MAX_ENTRIES must be > 0")
        if self.block_poll_interval <= 0:
            raise ValueError("BLOCK_POLL_INTERVAL must be > 0")
        if self.http_timeout <= 0:
            raise ValueError("HTTP_TIMEOUT must be > 0")
        if not self.tokens:
            raise ValueError("TOKENS must list at least one token")
        if not (0 < self.port < 65536):
            raise ValueError("PORT must be a valid TCP port")

        if not os.getenv("CHAIN_NODE"):
            logging.getLogger("dexgate").warning(
                f"Env var CHAIN_NODE not found. Using default {self.chain_node}"
            )
        if not os.getenv("API_ENDPOINT"):
            logging.getLogger("dexgate").warning(
                f"Env var API_ENDPOINT not found. Using default {self.api_endpoint}"
            )


def load_seed_phrases(path: str) -> List[str]:
    """Read the signer seed phrases: a JSON array of 12-word mnemonics."""
    seeds_file = Path(path)
    if not seeds_file.is_file():
        raise ValueError(f"Seed file not found: {path}")
    raw = loads(seeds_file.read_text(encoding="utf-8"))
    if not isinstance(raw, list) or not all(
        isinstance(el, str) and len(el.split(" ")) == 12 for el in raw
    ):
        raise ValueError("Failed to initialize seed phrases from config")
    return raw


def _sanity_check(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.
    """
    log_event(
        logging.getLogger("dexgate"),
        "config_loaded",
        level=INFO,
        chain_node=cfg.chain_node,
        api_endpoint=cfg.api_endpoint,
        chain_variant=cfg.chain_variant,
        purge_timeout=cfg.purge_timeout,
        tokens=list(cfg.tokens),
        query_cache_max_entries=cfg.query_cache_max_entries,
    )
