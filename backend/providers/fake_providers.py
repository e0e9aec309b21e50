from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from common.geo import Coordinates

from .contracts import RoutingBackend

FIXTURES_ROOT = Path(__file__).parent.parent / "fixtures" / "demo"


class _FixtureLoader:
    def __init__(self, fixture_name: str):
        self.path = FIXTURES_ROOT / fixture_name / "data.json"
        with self.path.open("r", encoding="utf-8") as f:
            self.data = json.load(f)


def _iso(dt: datetime) -> str:
    return dt.isoformat()


class FakeRoutingBackend(RoutingBackend, _FixtureLoader):
    """
    Deterministic trip planner backed by fixtures/demo/trip.

    Fixture trips carry minute offsets; they are anchored so that the trip
    arrives `slack_minutes` before the requested arrival time.
    """

    def __init__(self, configured: bool = True) -> None:
        _FixtureLoader.__init__(self, "trip")
        self.configured = configured
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    def is_configured(self) -> bool:
        return self.configured

    async def plan_trips(
        self,
        origin: Coordinates,
        destination: Coordinates,
        arrive_by: datetime,
    ) -> List[Dict[str, Any]]:
        self.calls.append({"origin": origin, "destination": destination, "arrive_by": arrive_by})
        if self.error is not None:
            raise self.error

        dest_key = f"{destination.latitude:.3f},{destination.longitude:.3f}"
        if dest_key in self.data.get("no_route", []):
            return []

        trips = []
        for template in self.data.get("trips", []):
            end = arrive_by - timedelta(minutes=template.get("slack_minutes", 0))
            duration = timedelta(minutes=template["duration_minutes"])
            start = end - duration
            legs = []
            for leg in template["legs"]:
                if leg["kind"] == "timed":
                    legs.append({
                        "kind": "timed",
                        "board_stop": leg["board_stop"],
                        "alight_stop": leg["alight_stop"],
                        "departure": _iso(start + timedelta(minutes=leg["departure_offset_minutes"])),
                        "arrival": _iso(start + timedelta(minutes=leg["arrival_offset_minutes"])),
                        "line": leg.get("line"),
                        "direction": leg.get("direction"),
                        "pt_mode": leg.get("pt_mode"),
                    })
                else:
                    legs.append({"kind": "continuous", "duration": leg["duration"]})
            trips.append({
                "duration": template["duration"],
                "start_time": _iso(start),
                "end_time": _iso(end),
                "legs": legs,
            })
        return trips
