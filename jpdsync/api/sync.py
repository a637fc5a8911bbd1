"""Sync trigger endpoints and the JPD webhook receiver"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Body, HTTPException

from jpdsync.config import settings
from jpdsync.errors import ConfigurationError, ValidationFailedError
from jpdsync.services import sync_service
from jpdsync.services.sync_service import run_sync
from jpdsync.services.validator import format_validation_report

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])
webhook_router = APIRouter(prefix="/webhook", tags=["webhook"])


@router.post("/trigger")
def trigger_sync(dry_run: bool = False):
    """Run one sync pass now and return its report"""
    try:
        result = run_sync(settings, trigger="api", dry_run=dry_run or settings.dry_run)
    except ValidationFailedError as e:
        raise HTTPException(status_code=400, detail=format_validation_report(e.result))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    if result is None:
        raise HTTPException(status_code=409, detail="Sync already running")
    return result.to_dict()


@router.get("/last")
def last_sync():
    """Report of the most recent completed pass in this process"""
    if not sync_service.last_result:
        raise HTTPException(status_code=404, detail="No sync has completed yet")
    return sync_service.last_result


def _webhook_sync_job():
    try:
        run_sync(settings, trigger="webhook")
    except Exception as e:
        logger.error(f"Webhook-triggered sync failed: {e}")


@webhook_router.post("/jpd", status_code=202)
def jpd_webhook(background_tasks: BackgroundTasks, payload: Optional[Dict[str, Any]] = Body(None)):
    """Accept a JPD webhook and run one pass in the background"""
    payload = payload or {}
    event = payload.get("webhookEvent", "unknown")
    key = (payload.get("issue") or {}).get("key")
    logger.info(f"JPD webhook received: {event}{f' ({key})' if key else ''}")
    background_tasks.add_task(_webhook_sync_job)
    return {"status": "sync triggered", "event": event}
