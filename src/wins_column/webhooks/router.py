"""GitHub webhook receiver."""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Request

from wins_column.schemas.jobs import JobType
from wins_column.webhooks.signature import verify_signature

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

WEBHOOK_PROCESSING_PRIORITY = 80


@router.post("/github", status_code=202)
async def receive_github_webhook(
    request: Request,
    x_github_event: Optional[str] = Header(None),
    x_github_delivery: Optional[str] = Header(None),
    x_hub_signature_256: Optional[str] = Header(None),
) -> Dict[str, Any]:
    """Verify a GitHub delivery and queue it for processing."""
    body = await request.body()
    secret = request.app.state.settings.github_webhook_secret
    if not verify_signature(secret, body, x_hub_signature_256):
        logger.warning(f"Rejected webhook delivery {x_github_delivery}: bad signature")
        raise HTTPException(status_code=401, detail="Invalid signature")
    if not x_github_event or not x_github_delivery:
        raise HTTPException(status_code=400, detail="Missing X-GitHub-Event or X-GitHub-Delivery header")

    if x_github_event != "push":
        logger.info(f"Ignoring {x_github_event} event {x_github_delivery}")
        return {"status": "ignored", "event": x_github_event, "delivery_id": x_github_delivery}

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Malformed JSON body: {e}")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    store = request.app.state.job_system.store
    created = await store.create_job(
        {
            "type": JobType.WEBHOOK_PROCESSING.value,
            "priority": WEBHOOK_PROCESSING_PRIORITY,
            "data": {
                "webhook_event": x_github_event,
                "payload": payload,
                "signature": x_hub_signature_256,
                "delivery_id": x_github_delivery,
            },
            "context": {"delivery_id": x_github_delivery, "triggered_by": "webhook"},
        }
    )
    if not created.ok:
        logger.error(f"Failed to queue webhook delivery {x_github_delivery}: {created.error}")
        raise HTTPException(status_code=500, detail="Failed to queue webhook")

    logger.info(f"Queued push delivery {x_github_delivery} as job {created.data.id}")
    return {"status": "queued", "job_id": created.data.id, "delivery_id": x_github_delivery}
