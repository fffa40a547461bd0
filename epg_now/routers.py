from typing import Annotated
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from epg_now.schemas import (
    IconResponse,
    MissingChannelsRequest,
    MissingChannelsResponse,
    ProgramView,
    SourceRequest,
    StatusResponse,
    UpdateResponse,
)
from epg_now.services import EPGManager


logger = logging.getLogger(__name__)

main_router = APIRouter()


def get_manager(request: Request) -> EPGManager:
    """The manager built by the app factory"""
    return request.app.state.epg_manager


ManagerDep = Annotated[EPGManager, Depends(get_manager)]


@main_router.get("/")
async def root(manager: ManagerDep) -> dict:
    """Root endpoint with service information"""
    next_run = manager.scheduler.get_next_run_time()

    return {
        "service": "EPG Now",
        "version": "0.1.0",
        "next_scheduled_update": next_run.isoformat() if next_run else None,
        "endpoints": {
            "status": "/epg/status - Update state and counts",
            "current": "/epg/{channel_id}/current - Program airing now",
            "upcoming": "/epg/{channel_id}/upcoming - Next programs",
            "icon": "/epg/{channel_id}/icon - Channel icon URL",
            "refresh": "/epg/refresh - Re-run the update (POST)",
            "health": "/health - Health check"
        }
    }


@main_router.get("/health")
async def health_check(manager: ManagerDep) -> dict:
    """Health check endpoint"""
    next_run = manager.scheduler.get_next_run_time()
    return {
        "status": "ok",
        "epg_available": manager.is_available(),
        "needs_update": manager.needs_update(),
        "next_update": next_run.isoformat() if next_run else None
    }


@main_router.get("/epg/status", response_model=StatusResponse)
async def get_status(manager: ManagerDep) -> StatusResponse:
    return await manager.status()


@main_router.post("/epg/initialize", response_model=UpdateResponse)
async def initialize_epg(request: SourceRequest, manager: ManagerDep) -> UpdateResponse:
    """Load EPG from a new source and install the daily schedule"""
    logger.info("EPG initialization requested via API")
    await manager.initialize(request.source)
    return UpdateResponse(status="completed", message="EPG initialized")


@main_router.post("/epg/refresh", response_model=UpdateResponse)
async def refresh_epg(manager: ManagerDep) -> UpdateResponse:
    """Manually re-run the EPG update for the current source"""
    logger.info("Manual EPG refresh triggered via API")
    if manager.last_source is None:
        raise HTTPException(status_code=409, detail="EPG source not initialized")

    if not await manager.rebuild():
        return UpdateResponse(status="skipped", message="EPG update already in progress")
    return UpdateResponse(status="completed", message="EPG update finished")


@main_router.post("/epg/missing-channels", response_model=MissingChannelsResponse)
async def missing_channels(request: MissingChannelsRequest, manager: ManagerDep) -> MissingChannelsResponse:
    missing = await manager.missing_channels(request.channels)
    return MissingChannelsResponse(count=len(missing), channels=missing)


@main_router.get("/epg/{channel_id}/current", response_model=ProgramView | None)
async def current_program(channel_id: str, manager: ManagerDep) -> ProgramView | None:
    return await manager.current_program(channel_id)


@main_router.get("/epg/{channel_id}/upcoming", response_model=list[ProgramView])
async def upcoming_programs(
    channel_id: str,
    manager: ManagerDep,
    limit: Annotated[int, Query(ge=0, le=50)] = 2,
) -> list[ProgramView]:
    return await manager.upcoming_programs(channel_id, limit)


@main_router.get("/epg/{channel_id}/icon", response_model=IconResponse)
async def channel_icon(channel_id: str, manager: ManagerDep) -> IconResponse:
    return IconResponse(channel_id=channel_id, icon=await manager.channel_icon(channel_id))
