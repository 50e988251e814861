"""
Chain variant selector.

The gateway runs against several structurally identical chains that differ
only in address format, sub-account naming and pallet routing. One
parameterized implementation reads these differences from a ChainVariant.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple


@dataclass(frozen=True)
class ChainVariant:
    name: str
    ss58_format: int
    # Sub-account that holds trading collateral ("Trader" / "Borrower")
    subaccount_kind: str
    # Token priced at exactly 1 USD regardless of the oracle
    stable_token: str
    dex_pallet: str = "EqDex"
    pool_pallet: str = "EqMarketMaker"
    subaccounts_pallet: str = "Subaccounts"
    balances_pallet: str = "EqBalances"
    default_tokens: Tuple[str, ...] = field(default_factory=tuple)


VARIANTS: Dict[str, ChainVariant] = {
    "equilibrium": ChainVariant(
        name="equilibrium",
        ss58_format=68,
        subaccount_kind="Trader",
        stable_token="eqd",
        default_tokens=("eq", "eqd", "btc", "eth", "dot", "usdt", "usdc", "gens", "crv"),
    ),
    "genshiro": ChainVariant(
        name="genshiro",
        ss58_format=67,
        subaccount_kind="Borrower",
        stable_token="xdot",
        default_tokens=("gens", "xdot", "eqd", "btc", "eth", "dot", "ksm", "usdt"),
    ),
}


def get_variant(name: str) -> ChainVariant:
    try:
        return VARIANTS[name.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown CHAIN_VARIANT {name!r}; expected one of {sorted(VARIANTS)}"
        ) from None
