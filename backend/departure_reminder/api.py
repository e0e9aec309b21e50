"""
Departure reminder HTTP surface for the host app.

The host pushes appointments and location fixes, triggers ticks from its
background scheduler, reports foreground/logout events, and drains the
scheduled notifications for delivery.
"""
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
import logging

from common.geo import Coordinates

from .engine import DepartureEngine
from .models import UpcomingAppointment

logger = logging.getLogger(__name__)

departure_router = APIRouter(prefix="/departure")


# Models
class SettingsPayload(BaseModel):
    enabled: bool
    buffer_minutes: int
    venue_proximity_meters: float


class SettingsUpdate(BaseModel):
    enabled: Optional[bool] = None
    buffer_minutes: Optional[int] = None
    venue_proximity_meters: Optional[float] = Field(default=None, gt=0)


class LocationPayload(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class AppointmentPayload(BaseModel):
    id: str
    start_time: datetime
    venue_name: str
    venue_location: LocationPayload
    venue_address: Optional[str] = None


class TickResponse(BaseModel):
    outcome: str
    state: str
    scheduled: List[str]
    cancelled: List[str]
    suppressed: List[str]
    skipped: List[str]
    fallback: List[str]
    purged: List[str]


def get_engine(request: Request) -> DepartureEngine:
    engine = getattr(request.app.state, "departure_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Departure reminder engine not initialized")
    return engine


def _settings_payload(engine: DepartureEngine) -> SettingsPayload:
    settings = engine.settings_store.load()
    return SettingsPayload(
        enabled=settings.enabled,
        buffer_minutes=settings.buffer_minutes,
        venue_proximity_meters=settings.venue_proximity_meters,
    )


@departure_router.get("/settings", response_model=SettingsPayload)
async def get_settings(engine: DepartureEngine = Depends(get_engine)):
    return _settings_payload(engine)


@departure_router.put("/settings", response_model=SettingsPayload)
async def update_settings(update: SettingsUpdate, engine: DepartureEngine = Depends(get_engine)):
    """Update settings; disabling clears everything, enabling starts tracking."""
    current = engine.settings_store.load()
    changes = {k: v for k, v in update.model_dump().items() if v is not None}
    try:
        updated = replace(current, **changes)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    engine.settings_store.save(updated)

    if current.enabled and not updated.enabled:
        await engine.enforcer.on_feature_disabled()
    elif updated.enabled and not current.enabled:
        state = await engine.task.start_background_task()
        logger.info(f"[DEPARTURE] Reminders enabled, engine {state.value}")
    elif updated.enabled and (
        updated.buffer_minutes != current.buffer_minutes
        or updated.venue_proximity_meters != current.venue_proximity_meters
    ):
        # Scheduled triggers were timed with the old settings
        cancelled = engine.task.release_all_notifications()
        logger.info(f"[DEPARTURE] Settings changed, released {cancelled} notification(s)")

    return _settings_payload(engine)


@departure_router.put("/appointments")
async def replace_appointments(
    appointments: List[AppointmentPayload], engine: DepartureEngine = Depends(get_engine)
):
    provider = engine.providers.appointments
    if not hasattr(provider, "replace_all"):
        raise HTTPException(status_code=409, detail="Appointment provider is not host-fed")
    provider.replace_all([
        UpcomingAppointment(
            id=a.id,
            start_time=a.start_time,
            venue_name=a.venue_name,
            venue_location=Coordinates(a.venue_location.latitude, a.venue_location.longitude),
            venue_address=a.venue_address,
        )
        for a in appointments
    ])
    return {"count": len(appointments)}


@departure_router.put("/location")
async def report_location(location: LocationPayload, engine: DepartureEngine = Depends(get_engine)):
    adapter = engine.providers.location
    if not hasattr(adapter, "location"):
        raise HTTPException(status_code=409, detail="Location adapter is not host-fed")
    adapter.location = Coordinates(location.latitude, location.longitude)
    return {"accepted": True}


@departure_router.post("/start")
async def start_tracking(engine: DepartureEngine = Depends(get_engine)):
    state = await engine.task.start_background_task()
    return {"state": state.value}


@departure_router.post("/check", response_model=TickResponse)
async def run_check(engine: DepartureEngine = Depends(get_engine)):
    """Run one tick of the background task."""
    try:
        result = await engine.task.run_check()
    except Exception as e:
        logger.error(f"[DEPARTURE] Tick failed: {e}")
        raise HTTPException(status_code=500, detail="Departure reminder check failed")

    return TickResponse(
        outcome=result.outcome.value,
        state=engine.task.state.value,
        scheduled=result.scheduled,
        cancelled=result.cancelled,
        suppressed=result.suppressed,
        skipped=result.skipped,
        fallback=result.fallback,
        purged=result.purged,
    )


@departure_router.post("/foreground")
async def app_foreground(engine: DepartureEngine = Depends(get_engine)):
    removed = engine.enforcer.on_app_foreground()
    return {"removed": removed}


@departure_router.post("/logout")
async def logout(engine: DepartureEngine = Depends(get_engine)):
    await engine.enforcer.on_logout()
    return {"success": True}


@departure_router.get("/reminders")
async def list_reminders(engine: DepartureEngine = Depends(get_engine)) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in engine.store.list_all()]


@departure_router.get("/notifications")
async def list_notifications(engine: DepartureEngine = Depends(get_engine)) -> List[Dict[str, Any]]:
    return engine.providers.notifications.list_scheduled()


@departure_router.get("/privacy")
async def privacy_status(engine: DepartureEngine = Depends(get_engine)):
    return {
        "no_location_history": engine.enforcer.verify_no_location_history(),
        "is_tracking": engine.store.is_tracking,
    }
