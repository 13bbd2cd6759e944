"""
Broadcast publishing endpoint.
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from starlette.datastructures import FormData

from broadcaster.coordinator import BroadcastCoordinator, raise_for_failures
from broadcaster.exceptions import ErrorCode, ValidationError
from broadcaster.types.social import PostRequest, PublishResponse

from ..auth import verify_api_key
from ..services import get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["publish"])

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")
TRUE_VALUES = {"1", "true", "yes", "on"}


def post_request_from_form(form: FormData) -> PostRequest:
    """Build a PostRequest from form fields; images and targets may repeat."""
    data: Dict[str, Any] = {
        "content": form.get("content") or "",
        "link": form.get("link") or None,
        "images": [str(v) for v in form.getlist("images")],
        "language": form.get("language") or None,
        "cleanupHtml": str(form.get("cleanupHtml", "")).strip().lower() in TRUE_VALUES,
    }
    targets = [str(v) for v in form.getlist("targets") if str(v).strip()]
    if targets:
        data["targets"] = targets
    return PostRequest.model_validate(data)


async def read_post_request(request: Request) -> PostRequest:
    """Parse a publish request sent as JSON or as a form."""
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()

    if content_type in FORM_CONTENT_TYPES:
        return post_request_from_form(await request.form())

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError(
            message="Request body must be JSON or form data",
            error_code=ErrorCode.INVALID_INPUT,
        )
    if not isinstance(body, dict):
        raise ValidationError(
            message="Request body must be a JSON object",
            error_code=ErrorCode.INVALID_INPUT,
        )
    return PostRequest.model_validate(body)


@router.post(
    "/publish",
    response_model=PublishResponse,
    responses={
        400: {"description": "Invalid post or no targets"},
        401: {"description": "Missing or invalid API key"},
        500: {"description": "One or more targets failed (composite response)"},
    },
)
async def publish(
    request: Request,
    user_id: str = Depends(verify_api_key),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
) -> PublishResponse:
    """
    Publish one post to every requested (or connected) platform.

    When any target fails the response carries the highest failure status
    and lists every target's outcome, including the ones that published.
    """
    post_request = await read_post_request(request)
    result = await coordinator.broadcast_detached(user_id, post_request)
    request.state.broadcast_targets = [platform.value for platform, _ in result.entries]
    request.state.broadcast_status = result.status.value
    raise_for_failures(result)
    return PublishResponse(status=result.status, results=result.to_responses())
