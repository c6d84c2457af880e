"""WhatsApp Cloud API webhook endpoints."""

import json
import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status
from fastapi.responses import PlainTextResponse

from nabi.config import get_settings
from nabi.errors import WebhookAuthError
from nabi.services.pipeline import webhook_pipeline

router = APIRouter()
logger = logging.getLogger(__name__)
settings = get_settings()


def verify_handshake(mode: str | None, token: str | None, challenge: str | None) -> str:
    """Return the challenge to echo, or raise WebhookAuthError."""
    if mode == "subscribe" and settings.verify_token and token == settings.verify_token:
        return challenge or ""
    raise WebhookAuthError(f"Webhook verification failed (mode={mode})")


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(request: Request) -> str:
    """Meta verification handshake: echo hub.challenge if the token matches."""
    params = request.query_params
    try:
        challenge = verify_handshake(
            params.get("hub.mode"),
            params.get("hub.verify_token"),
            params.get("hub.challenge"),
        )
    except WebhookAuthError as e:
        logger.warning(str(e))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Verification failed",
        )

    logger.info("Webhook verified successfully")
    return challenge


async def process_webhook(payload: dict) -> None:
    """Background entry point; errors are logged so they never reach Meta."""
    try:
        await webhook_pipeline.handle(payload)
    except Exception as e:
        logger.exception(f"Error processing webhook: {e}")


@router.post("/webhook")
async def receive_webhook(request: Request, background_tasks: BackgroundTasks) -> dict:
    """Acknowledge a delivery immediately and process it in the background.

    Meta retries deliveries that are not answered with 200 quickly, so the
    status code never depends on the processing outcome.
    """
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        logger.warning("Webhook body is not valid JSON")
        return {"status": "ok"}

    logger.debug(f"Webhook payload: {payload}")
    if isinstance(payload, dict):
        background_tasks.add_task(process_webhook, payload)
    else:
        logger.warning("Webhook body is not a JSON object")

    return {"status": "ok"}
