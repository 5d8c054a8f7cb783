import logging

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from starlette.requests import Request

from app.core.config import Settings, get_settings
from app.core.urls import example_postbacks, postback_base_url, postback_template
from app.schemas.postback import (
    PostbackAck,
    PostbackError,
    PostbackHealth,
    PostbackTemplates,
    PostbackType,
)
from app.services.relay import (
    PostbackForwarder,
    PostbackValidationError,
    get_forwarder,
    parse_postback_event,
    relay_postback,
)

RELAY_HEADER = "X-Postback-Relay"
GENERIC_ERROR_MESSAGE = "An unexpected error occurred while processing the postback"

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "",
    response_model=PostbackAck,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": PostbackError},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": PostbackError},
    },
)
async def receive_postback(
    request: Request,
    settings: Settings = Depends(get_settings),
    forwarder: PostbackForwarder | None = Depends(get_forwarder),
) -> JSONResponse:
    logger.info("received postback request query=%s", request.url.query)

    if not request.query_params:
        health = PostbackHealth(status="healthy", message="Postback service is running correctly")
        return JSONResponse(content=health.model_dump())

    try:
        event = parse_postback_event(
            request.query_params.multi_items(),
            accept_aliases=settings.accept_parameter_aliases,
        )
        logger.info(
            "processing postback click_id=%s goal=%s payout=%s payout_value=%s",
            event.click_id,
            event.goal,
            event.payout_display,
            event.payout_value,
        )
        result = await relay_postback(
            event,
            forwarder,
            include_payout_in_ack=settings.include_payout_in_ack,
        )
        return JSONResponse(
            content=result.body,
            status_code=result.status_code,
            headers={RELAY_HEADER: result.kind},
        )
    except PostbackValidationError as exc:
        logger.info("rejected postback: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=PostbackError(error=str(exc)).model_dump(exclude_none=True),
        )
    except Exception as exc:
        logger.exception("error processing postback")
        message = str(exc) if settings.expose_error_details else GENERIC_ERROR_MESSAGE
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=PostbackError(error="Internal server error", message=message).model_dump(),
        )


@router.get("/templates", response_model=PostbackTemplates)
async def postback_templates(
    request: Request,
    postback_type: PostbackType = Query(default="conversion", alias="type"),
    include_payout: bool = False,
    settings: Settings = Depends(get_settings),
) -> PostbackTemplates:
    base_url = postback_base_url(settings.postback_base_url, str(request.base_url))
    return PostbackTemplates(
        base_url=base_url,
        type=postback_type,
        template=postback_template(base_url, postback_type, include_payout=include_payout),
        examples=example_postbacks(base_url),
    )
