"""System endpoints: scan status and user-triggered backfill."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from chain_feed.core.settings import settings
from chain_feed.services.feed_sync import FeedSyncController, get_feed_sync_controller

router = APIRouter(prefix="/system", tags=["system"])

ControllerDep = Annotated[FeedSyncController, Depends(get_feed_sync_controller)]


@router.get("/config")
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes the node API key; suitable for transparency UIs.
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
        },
        "contract": {
            "current": settings.contract_address_current,
            "legacy": settings.contract_address_legacy,
            "method": settings.make_post_method,
            "discuss_prefix": settings.discuss_prefix,
            "first_block": settings.first_block,
            "breaking_changes": {
                "v3": settings.breaking_change_v3_timestamp,
                "v5": settings.breaking_change_v5_timestamp,
            },
        },
        "scan": {
            "enabled": settings.scan_enabled,
            "backward_source": settings.backward_scan_source,
            "indexer_page_limit": settings.indexer_page_limit,
        },
    }


@router.get("/status")
async def get_scan_status(controller: ControllerDep) -> dict[str, Any]:
    """Return driver flags, watermarks and transport health."""
    return controller.status()


@router.post("/scan/backward")
async def trigger_backward_scan(
    controller: ControllerDep,
    source: Literal["indexer", "rpc"] | None = Query(None),
) -> JSONResponse:
    """Resume the backward scan for another time-boxed burst."""
    started = controller.request_backward_scan(source)
    body = {
        "scanning_past_blocks": controller.scanning_past_blocks,
        "no_more_past_blocks": controller.no_more_past_blocks,
        "source": controller.backward.source,
    }
    code = status.HTTP_202_ACCEPTED if started else status.HTTP_409_CONFLICT
    return JSONResponse(status_code=code, content=body)
