"""API v1 router aggregation.

All v1 endpoints are prefixed with `/api/v1`.

Routers included:
- Notifications operator console (`/api/v1/notifications/*`)
"""

from fastapi import APIRouter

from lead_notifier.api.v1 import notifications

router = APIRouter(prefix="/api/v1")

router.include_router(notifications.router)
