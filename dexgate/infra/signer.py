"""
Keyring of local signers, one sr25519 keypair per seed phrase.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from substrateinterface import Keypair, KeypairType

from dexgate.core.errors import SignerNotFound
from dexgate.infra.logging_cfg import INFO, log_event

log = logging.getLogger("dexgate")


class Keyring:
    def __init__(self, ss58_format: int) -> None:
        self.ss58_format = ss58_format
        self._pairs: Dict[str, Keypair] = {}

    def add_from_mnemonic(self, mnemonic: str) -> Keypair:
        pair = Keypair.create_from_mnemonic(
            mnemonic, ss58_format=self.ss58_format, crypto_type=KeypairType.SR25519
        )
        self._pairs[pair.ss58_address] = pair
        return pair

    def add_pair(self, pair: Keypair) -> None:
        self._pairs[pair.ss58_address] = pair

    def get_pair(self, address: str) -> Keypair:
        pair = self._pairs.get(address)
        if pair is None:
            raise SignerNotFound(address)
        return pair

    def __contains__(self, address: str) -> bool:
        return address in self._pairs

    def __len__(self) -> int:
        return len(self._pairs)

    @property
    def addresses(self) -> List[str]:
        return list(self._pairs)

    @classmethod
    def from_seeds(cls, seeds: Iterable[str], ss58_format: int) -> "Keyring":
        keyring = cls(ss58_format)
        for seed in seeds:
            pair = keyring.add_from_mnemonic(seed)
            log_event(log, "signer_loaded", level=INFO, address=pair.ss58_address)
        return keyring
