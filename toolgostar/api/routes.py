from fastapi import APIRouter, Depends
from fastapi.responses import Response

from toolgostar.auth.api import auth_router, users_router
from toolgostar.core.config import get_settings
from toolgostar.core.errors import NotFoundError
from toolgostar.core.rbac import require_permission
from toolgostar.leads.api import analytics_router, contact_router, quotes_router
from toolgostar.metrics import generate_metrics_payload, metrics_content_type
from toolgostar.platform.security.context import Principal
from toolgostar.platform.security.permissions import Action, Resource

router = APIRouter()
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(contact_router)
router.include_router(quotes_router)
router.include_router(analytics_router)


@router.get("/api/v1/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(_user: Principal = Depends(require_permission(Resource.METRICS, Action.READ))) -> Response:
    if not get_settings().metrics_enabled:
        raise NotFoundError("Not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
