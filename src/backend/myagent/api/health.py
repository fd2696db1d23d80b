"""Health check endpoints."""
import logging

from fastapi import APIRouter, Depends

from myagent.api.runs import get_gateway, get_settings
from myagent.config import Settings
from myagent.services.gateway import ModelGateway

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check(app_settings: Settings = Depends(get_settings)):
    return {"status": "ok", "service": app_settings.app_name}


@router.get("/api/health/config")
async def config_check(app_settings: Settings = Depends(get_settings)):
    """Diagnostic endpoint: shows whether critical settings are configured (no secrets)."""
    return {
        "api_endpoint": app_settings.api.endpoint,
        "llm_api_key_set": bool(app_settings.llm_api_key),
        "models": app_settings.models.model_dump(),
        "max_attempts": app_settings.execution.max_attempts,
        "target_score": app_settings.execution.target_score,
    }


@router.get("/api/health/model")
async def model_readiness(gateway: ModelGateway = Depends(get_gateway)):
    """Check if the model endpoint is accepting requests."""
    ready = await gateway.check_readiness()
    return {"ready": ready, "model_id": gateway.settings.models.default}
