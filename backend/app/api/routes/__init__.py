# API Routes Module
from app.api.routes import (
    analyses,
    checkout,
    profiles,
    usage,
    webhooks,
)

__all__ = [
    "analyses",
    "checkout",
    "profiles",
    "usage",
    "webhooks",
]
