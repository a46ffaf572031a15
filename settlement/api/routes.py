"""FastAPI endpoints for the settlement engine.

This module defines the Circle webhook receiver, swap job status and ledger
lookups, and a health check. Signature and replay checks happen here; the
event itself is handed to the reconciler.
"""

import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from settlement.api.dependencies import get_services_dep
from settlement.core.errors import ExternalServiceError, WebhookVerificationError
from settlement.core.models import LedgerRecord, SwapJobView
from settlement.core.utils import get_logger
from settlement.services.container import Services
from settlement.services.webhook_security import verify_signature

router = APIRouter()
logger = get_logger("settlement.api")

KEY_ID_HEADER = "X-Circle-Key-Id"
SIGNATURE_HEADER = "X-Circle-Signature"


@router.post(
    "/webhooks/circle",
    summary="Receive a Circle transaction notification",
    description=(
        "Verifies the ECDSA signature over the raw body using the key named in `X-Circle-Key-Id`, "
        "drops notifications older than the replay window, then reconciles the referenced transaction.\n\n"
        "**Response:**\n"
        "- 200 OK: The notification was accepted (also when it is ignored, replayed, or fails internally).\n"
        "- 400 Bad Request: Signature headers missing or body is not JSON.\n"
        "- 401 Unauthorized: The signature does not verify.\n"
        "- 503 Service Unavailable: The signing key could not be fetched; Circle will redeliver."
    ),
    responses={
        200: {"description": "Accepted.", "content": {"application/json": {"example": {"ok": True}}}},
        400: {
            "description": "Missing headers.",
            "content": {"application/json": {"example": {"detail": "Missing Circle signature headers."}}},
        },
        401: {
            "description": "Bad signature.",
            "content": {"application/json": {"example": {"detail": "Invalid webhook signature."}}},
        },
    },
)
async def circle_webhook(request: Request, services: Services = Depends(get_services_dep)) -> dict:
    """Verify and reconcile one Circle notification."""
    key_id = request.headers.get(KEY_ID_HEADER)
    signature = request.headers.get(SIGNATURE_HEADER)
    if not key_id or not signature:
        raise HTTPException(400, "Missing Circle signature headers.")

    body = await request.body()
    try:
        public_key = await run_in_threadpool(services.public_keys.get, key_id)
    except WebhookVerificationError as exc:
        logger.warning(f"Unusable webhook key {key_id}: {exc}")
        raise HTTPException(401, "Invalid webhook signature.") from exc
    except ExternalServiceError as exc:
        logger.exception(f"Could not fetch webhook key {key_id}")
        raise HTTPException(503, "Webhook key unavailable.") from exc
    if not verify_signature(public_key, body, signature):
        logger.warning(f"Rejected webhook with invalid signature (key {key_id})")
        raise HTTPException(401, "Invalid webhook signature.")

    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise HTTPException(400, "Body is not valid JSON.") from exc
    if not isinstance(payload, dict):
        raise HTTPException(400, "Body is not a JSON object.")

    try:
        outcome = await run_in_threadpool(services.reconciler.handle_notification, payload)
        logger.info(f"Webhook {payload.get('notificationType')} {payload.get('notificationId')}: {outcome}")
    except Exception:
        logger.exception(f"Error processing Circle webhook {payload.get('notificationId')}")
    return {"ok": True}


@router.get(
    "/status/{job_id}",
    response_model=SwapJobView,
    summary="Get swap job status",
    description=(
        "Check the status of a swap job. The job id is the id of the deposit that triggered it.\n\n"
        "**Response:**\n"
        "- 200 OK: Job status, amounts, timestamps and error if any.\n"
        "- 404 Not Found: If the job does not exist."
    ),
    responses={
        404: {
            "description": "Job not found.",
            "content": {"application/json": {"example": {"detail": "Job not found"}}},
        },
    },
)
def get_status(job_id: str, services: Services = Depends(get_services_dep)) -> SwapJobView:
    """Get the status of a swap job."""
    job = services.jobs.get(job_id)
    if job is None:
        raise HTTPException(404, "Job not found")
    return SwapJobView(**job.model_dump(include=set(SwapJobView.model_fields)))


@router.get(
    "/transactions/{owner_id}",
    response_model=list[LedgerRecord],
    summary="List an owner's ledger records",
    description="Returns the owner's unified transaction records, most recently updated first.",
)
def list_transactions(
    owner_id: str,
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services_dep),
) -> list[LedgerRecord]:
    """List ledger records for an owner."""
    return services.ledger.list_for_owner(owner_id, limit=limit)


@router.get(
    "/health",
    summary="Health check",
    description="Simple health check endpoint. Returns status ok.",
    response_description="Status ok.",
    responses={200: {"description": "API is healthy.", "content": {"application/json": {"example": {"status": "ok"}}}}},
)
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}
