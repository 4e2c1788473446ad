from fastapi import APIRouter, Request

from .. import __version__

router = APIRouter(prefix="/api/v1", tags=["core"])


@router.get("/health")
def api_health(request: Request):
    settings = request.app.state.settings
    return {"status": "ok", "scope": "api-v1", "version": __version__, "rp_id": settings.RP_ID}
