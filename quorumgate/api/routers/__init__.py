"""API routers for QuorumGate."""

from . import health
from . import requests
from . import policies

__all__ = [
    "health",
    "requests",
    "policies",
]
