"""
dexgate: HTTP/JSON gateway for an on-chain DEX order book.
"""

__version__ = "0.1.0"
