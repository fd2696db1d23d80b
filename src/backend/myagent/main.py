"""
Refinement Agent — FastAPI Backend
"""
import logging

from fastapi import FastAPI

from myagent.api import health, runs
from myagent.config import settings

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Refinement Agent",
    description="Iterative search, think, evaluate and feedback loop over a language model",
    version="0.1.0",
)

# Routes
app.include_router(health.router, tags=["health"])
app.include_router(runs.router, prefix="/api/runs", tags=["runs"])


def _mask(val: str) -> str:
    if not val:
        return "(empty)"
    if len(val) <= 8:
        return "***"
    return val[:4] + "..." + val[-4:]


@app.on_event("startup")
async def startup():
    """Log the effective configuration (secrets masked)."""
    logger.info("=== Refinement Agent Backend Starting ===")
    logger.info(f"  api_endpoint : {settings.api.endpoint}")
    logger.info(f"  llm_api_key  : {_mask(settings.llm_api_key)}")
    logger.info(f"  models       : {settings.models.model_dump()}")
    logger.info(f"  max_attempts : {settings.execution.max_attempts}")
    logger.info(f"  target_score : {settings.execution.target_score}")
    logger.info(f"  reports_dir  : {settings.reports_dir}")

    if not settings.llm_api_key:
        logger.warning("LLM_API_KEY is empty -- model API calls will fail!")
