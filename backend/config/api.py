"""
Django Ninja API configuration.
"""

from django.http import HttpRequest
from ninja import NinjaAPI

from apps.mobile.api import router as mobile_router
from apps.sync.api import router as sync_router

api = NinjaAPI(
    title="Mobile Sync API",
    version="1.0.0",
    description="Offline sync queue, conflict resolution and mobile data cache.",
    openapi_extra={
        "info": {
            "contact": {"name": "API Support"},
        },
        "tags": [
            {
                "name": "sync",
                "description": "Sync queue, sessions and conflict resolution",
            },
            {
                "name": "mobile",
                "description": "Per-user mobile data cache",
            },
            {
                "name": "health",
                "description": "Service health and readiness checks",
            },
        ],
    },
)

# Register routers
api.add_router("/sync", sync_router)
api.add_router("/mobile", mobile_router)


@api.get("/health", tags=["health"], operation_id="healthCheck", summary="Health check")
def health_check(request: HttpRequest) -> dict:
    """Health check endpoint for load balancer."""
    return {"status": "ok"}
