"""
Route Calculator - wraps the trip-planning backend.

Flow for calculate_route():
1. Return a cached result (marked is_cached) when the rounded query was seen
   within the last 5 minutes
2. Fail with API_NOT_CONFIGURED when no backend credential is set; callers
   fall back to a time-based estimate
3. Wait for the rate limiter, then ask the backend for trips arriving by the
   target time
4. Normalize the best trip into a RouteResult and cache it

Any unexpected exception is wrapped as API_ERROR.
"""

import asyncio
import logging
import math
import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from common.geo import Coordinates
from providers.contracts import RoutingBackend

from .models import NearestStop, RouteLeg, RouteResult, TransportMode
from .route_cache import RateLimitAborted, RateLimiter, RouteCache, make_cache_key

logger = logging.getLogger(__name__)

# Assumed average walking speed used to estimate distance to the first stop
WALKING_METERS_PER_MINUTE = 80

_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


class RouteErrorCode(str, Enum):
    API_NOT_CONFIGURED = "API_NOT_CONFIGURED"
    NO_ROUTE = "NO_ROUTE"
    API_ERROR = "API_ERROR"


class RouteCalculationError(Exception):
    """Recoverable routing failure; callers substitute the fallback estimate."""

    def __init__(self, message: str, code: RouteErrorCode):
        super().__init__(message)
        self.code = code

    def __repr__(self) -> str:
        return f"RouteCalculationError({self.code.value}: {self})"


def parse_duration_minutes(duration: Optional[str]) -> int:
    """
    Parse an ISO-8601 duration ("PT1H25M30S") to whole minutes.

    Seconds round up to the next minute. Unparseable input yields 0.
    """
    if not duration:
        return 0
    match = _DURATION_RE.match(duration.strip())
    if not match:
        return 0

    parts = match.groupdict()
    total = int(parts["days"] or 0) * 24 * 60
    total += int(parts["hours"] or 0) * 60
    total += int(parts["minutes"] or 0)
    if parts["seconds"]:
        total += math.ceil(float(parts["seconds"]) / 60)
    return total


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def detect_transport_mode(pt_mode: Optional[str]) -> TransportMode:
    """Map the backend's mode field to a TransportMode; unknown timed modes are buses."""
    mode = (pt_mode or "").lower()
    if "rail" in mode or "train" in mode:
        return TransportMode.TRAIN
    if "bus" in mode:
        return TransportMode.BUS
    if "tram" in mode:
        return TransportMode.TRAM
    if "metro" in mode or "underground" in mode:
        return TransportMode.METRO
    if "ferry" in mode or "water" in mode:
        return TransportMode.FERRY
    return TransportMode.BUS


def convert_legs(trip: Dict[str, Any], trip_start: datetime) -> List[RouteLeg]:
    """
    Convert raw backend legs into RouteLegs.

    Walking legs carry no timetable, so they are placed on a running cursor
    starting at the trip start and advanced by each leg.
    """
    raw_legs = trip.get("legs", [])
    legs: List[RouteLeg] = []
    cursor = trip_start
    previous_stop = "Current location"

    for index, raw in enumerate(raw_legs):
        if raw.get("kind") == "timed":
            departure = parse_timestamp(raw.get("departure")) or cursor
            arrival = parse_timestamp(raw.get("arrival")) or departure
            legs.append(RouteLeg(
                mode=detect_transport_mode(raw.get("pt_mode")),
                line=raw.get("line"),
                direction=raw.get("direction"),
                departure_time=departure,
                arrival_time=arrival,
                from_stop=raw.get("board_stop", ""),
                to_stop=raw.get("alight_stop", ""),
            ))
            cursor = arrival
            previous_stop = raw.get("alight_stop", "") or previous_stop
        elif raw.get("kind") == "continuous":
            minutes = parse_duration_minutes(raw.get("duration"))
            next_timed = next(
                (leg for leg in raw_legs[index + 1:] if leg.get("kind") == "timed"), None
            )
            to_stop = next_timed.get("board_stop", "Transit stop") if next_timed else "Destination"
            end = cursor + timedelta(minutes=minutes)
            legs.append(RouteLeg(
                mode=TransportMode.WALK,
                departure_time=cursor,
                arrival_time=end,
                from_stop=previous_stop,
                to_stop=to_stop,
            ))
            cursor = end
            previous_stop = to_stop
    return legs


def build_route_result(trip: Dict[str, Any], target_arrival: datetime) -> RouteResult:
    """Normalize one backend trip into a RouteResult."""
    duration_minutes = parse_duration_minutes(trip.get("duration"))
    arrival = parse_timestamp(trip.get("end_time")) or target_arrival
    departure = parse_timestamp(trip.get("start_time")) or arrival - timedelta(minutes=duration_minutes)

    raw_legs = trip.get("legs", [])
    walk_minutes = 0
    if raw_legs and raw_legs[0].get("kind") == "continuous":
        walk_minutes = parse_duration_minutes(raw_legs[0].get("duration"))

    first_timed = next((leg for leg in raw_legs if leg.get("kind") == "timed"), None)
    stop_name = (first_timed or {}).get("board_stop") or "Unknown"

    return RouteResult(
        duration_minutes=duration_minutes,
        departure_time=departure,
        arrival_time=arrival,
        walk_time_minutes=walk_minutes,
        nearest_stop=NearestStop(
            name=stop_name,
            distance_meters=walk_minutes * WALKING_METERS_PER_MINUTE,
            walk_time_minutes=walk_minutes,
        ),
        legs=convert_legs(trip, departure),
        is_cached=False,
    )


class RouteCalculator:
    """
    Owns the route cache and the rate limiter for one routing backend.

    One instance per process keeps the single-limiter semantics the
    backend quota requires; it is injected wherever routes are needed.
    """

    def __init__(
        self,
        backend: RoutingBackend,
        cache: Optional[RouteCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.backend = backend
        self.cache = cache or RouteCache()
        self.rate_limiter = rate_limiter or RateLimiter()

    def is_configured(self) -> bool:
        return self.backend.is_configured()

    async def calculate_route(
        self,
        origin: Coordinates,
        destination: Coordinates,
        target_arrival: datetime,
        abort: Optional[asyncio.Event] = None,
    ) -> RouteResult:
        """
        Calculate a transit route arriving by `target_arrival`.

        Raises:
            RouteCalculationError: API_NOT_CONFIGURED, NO_ROUTE or API_ERROR
        """
        key = make_cache_key(origin, destination, target_arrival)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("[DEPARTURE] Route cache hit")
            return cached

        if not self.backend.is_configured():
            raise RouteCalculationError(
                "Routing API key not configured", RouteErrorCode.API_NOT_CONFIGURED
            )

        try:
            await self.rate_limiter.acquire(abort)
        except RateLimitAborted as e:
            raise RouteCalculationError(str(e), RouteErrorCode.API_ERROR) from e

        try:
            trips = await self.backend.plan_trips(origin, destination, target_arrival)
            if not trips:
                raise RouteCalculationError(
                    "No route found between locations", RouteErrorCode.NO_ROUTE
                )
            result = build_route_result(trips[0], target_arrival)
        except RouteCalculationError:
            raise
        except Exception as e:
            logger.warning(f"[DEPARTURE] Routing backend failed: {e}")
            raise RouteCalculationError(
                str(e) or "Route calculation failed", RouteErrorCode.API_ERROR
            ) from e

        self.cache.put(key, result)
        return result

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> dict:
        return self.cache.stats()
