"""HTTP routes, grouped by resource.

Routers are collected by create_api_router() rather than at import time
so tests can import individual route modules before settings exist.
"""

from fastapi import APIRouter

from quizmint.api.routes import auth, billing, card_sets, health, upload, webhooks

ROUTERS = (
    (health.router, "health"),
    (auth.router, "auth"),
    (upload.router, "upload"),
    (card_sets.router, "card-sets"),
    (billing.router, "billing"),
    (webhooks.router, "webhooks"),
)


def create_api_router() -> APIRouter:
    api_router = APIRouter()
    for router, tag in ROUTERS:
        api_router.include_router(router, tags=[tag])
    return api_router


__all__ = ["create_api_router"]
