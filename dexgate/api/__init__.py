"""
HTTP API package: aiohttp routes and request schemas.
"""

from dexgate.api.routes import GatewayAPI, error_middleware
from dexgate.api.schemas import Validator

__all__ = [
    "GatewayAPI",
    "error_middleware",
    "Validator",
]
