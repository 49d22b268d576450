"""Public scrape and screenshot routes (``/api/v1``).

Both routes hand straight over to :class:`ScrapeOrchestrator`; failures are
raised as :class:`~scrape_gateway.core.exceptions.GatewayError` and rendered
by the application's exception handler.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from scrape_gateway.api.dependencies import get_call_context, get_orchestrator
from scrape_gateway.api.responses import image_response, success_response
from scrape_gateway.core.orchestrator import CallContext, ScrapeOrchestrator
from scrape_gateway.core.schemas.scrape import ScrapeRequest, ScreenshotRequest

router = APIRouter(tags=["scrape"])


@router.post("/scrape")
async def scrape(
    body: ScrapeRequest,
    ctx: Annotated[CallContext, Depends(get_call_context)],
    orchestrator: Annotated[ScrapeOrchestrator, Depends(get_orchestrator)],
) -> JSONResponse:
    """Fetch one page and return its content.

    ``render=false`` uses a plain HTTP fetch; ``render=true`` renders the
    page in a headless browser first.
    """
    outcome = await orchestrator.scrape(body, ctx)
    return success_response(
        outcome.result.to_dict(),
        ctx.request_id,
        meta={"duration_ms": outcome.duration_ms, "render_mode": outcome.render_mode},
        headers=outcome.headers,
    )


@router.post("/screenshot")
async def screenshot(
    body: ScreenshotRequest,
    ctx: Annotated[CallContext, Depends(get_call_context)],
    orchestrator: Annotated[ScrapeOrchestrator, Depends(get_orchestrator)],
) -> Response:
    """Render one page and return the raw image bytes."""
    outcome = await orchestrator.screenshot(body, ctx)
    return image_response(
        outcome.image,
        outcome.content_type,
        ctx.request_id,
        headers=outcome.headers,
    )
