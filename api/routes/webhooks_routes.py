"""Inbound vendor webhook endpoints.

The body is read as raw bytes and verified before any JSON parsing. Failure
responses carry only the stable code, never the expected signature.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from core.dependencies import WebhookVerifierDep
from core.logger import get_logger
from core.webhook_signatures import WebhookFailure
from schemas import ErrorCodeResponse, WebhookResponse
from services.webhook_events_service import (
    InvalidWebhookPayload,
    handle_webhook_event,
    parse_webhook_event,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

_FAILURE_STATUS = {
    WebhookFailure.MISSING_SIGNATURE: 400,
    WebhookFailure.INVALID_SIGNATURE_FORMAT: 400,
    WebhookFailure.TIMESTAMP_TOO_OLD: 400,
    WebhookFailure.INVALID_SIGNATURE: 401,
    WebhookFailure.UNKNOWN_VENDOR: 404,
}


@router.post(
    "/{vendor}",
    response_model=WebhookResponse,
    summary="Receive a signed vendor webhook",
    responses={
        400: {
            "model": ErrorCodeResponse,
            "description": "Missing or malformed signature, stale timestamp, bad JSON",
        },
        401: {"model": ErrorCodeResponse, "description": "Signature mismatch"},
        404: {"model": ErrorCodeResponse, "description": "Unknown or disabled vendor"},
    },
)
async def receive_webhook(
    vendor: str, request: Request, verifier: WebhookVerifierDep
) -> WebhookResponse | JSONResponse:
    header = verifier.header_for(vendor)
    raw_body = await request.body()
    signature = request.headers.get(header) if header else None

    result = verifier.verify(vendor, raw_body, signature)
    if not result.valid:
        failure = result.failure or WebhookFailure.INVALID_SIGNATURE
        logger.warning(
            "webhook.rejected",
            vendor=vendor,
            code=failure.value,
            body_length=len(raw_body),
        )
        return JSONResponse({"code": failure.value}, status_code=_FAILURE_STATUS[failure])

    try:
        event = parse_webhook_event(vendor, raw_body)
    except InvalidWebhookPayload:
        logger.warning("webhook.invalid_payload", vendor=vendor)
        return JSONResponse({"code": "INVALID_PAYLOAD"}, status_code=400)

    handle_webhook_event(event)
    return WebhookResponse(vendor=vendor, event_type=event.event_type)
