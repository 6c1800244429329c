import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import launcher
from ..auth import require_cron_secret, secrets_match
from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


class IngestRequest(BaseModel):
    password: Optional[str] = None


class IngestResponse(BaseModel):
    success: bool
    message: str
    error: Optional[str] = None


@router.post("/ingest", response_model=IngestResponse)
def start_ingest(body: IngestRequest, settings: Settings = Depends(get_settings)):
    """
    Admin trigger: starts the job in the background and returns immediately.
    """
    if not secrets_match(body.password, settings.admin_password):
        return JSONResponse(status_code=401, content={"success": False, "message": "Invalid password"})
    try:
        launcher.launch_ingest()
    except OSError as exc:
        logger.error("[TRIGGER] Failed to start ingestion: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Failed to start ingestion", "error": str(exc)},
        )
    return IngestResponse(
        success=True,
        message="Product ingestion started! This will take 30-45 minutes. "
                "The catalog will update automatically when complete.",
    )


@router.get("/cron/ingest", dependencies=[Depends(require_cron_secret)])
def cron_ingest():
    launcher.launch_ingest()
    return {
        "message": "Ingestion triggered",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
