from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

import httpx

from common.config import PLACEHOLDER_API_KEY, load_config
from common.geo import Coordinates

from .contracts import RoutingBackend

logger = logging.getLogger(__name__)

OJP_NS = {
    "ojp": "http://www.vdv.de/ojp",
    "siri": "http://www.siri.org.uk/siri",
}

TRIP_REQUEST_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<OJP xmlns="http://www.vdv.de/ojp" xmlns:siri="http://www.siri.org.uk/siri" version="2.0">
  <OJPRequest>
    <siri:ServiceRequest>
      <siri:RequestTimestamp>{timestamp}</siri:RequestTimestamp>
      <siri:RequestorRef>{requestor_ref}</siri:RequestorRef>
      <OJPTripRequest>
        <siri:RequestTimestamp>{timestamp}</siri:RequestTimestamp>
        <Origin>
          <PlaceRef>
            <GeoPosition>
              <siri:Longitude>{origin_lon}</siri:Longitude>
              <siri:Latitude>{origin_lat}</siri:Latitude>
            </GeoPosition>
            <Name><Text>Origin</Text></Name>
          </PlaceRef>
        </Origin>
        <Destination>
          <PlaceRef>
            <GeoPosition>
              <siri:Longitude>{dest_lon}</siri:Longitude>
              <siri:Latitude>{dest_lat}</siri:Latitude>
            </GeoPosition>
            <Name><Text>Destination</Text></Name>
          </PlaceRef>
          <DepArrTime>{arrive_by}</DepArrTime>
        </Destination>
        <Params>
          <NumberOfResults>{results}</NumberOfResults>
          <ModeAndModeOfOperationFilter>
            <Exclude>false</Exclude>
            <PtMode>rail</PtMode>
            <PtMode>bus</PtMode>
            <PtMode>tram</PtMode>
            <PtMode>metro</PtMode>
            <PtMode>water</PtMode>
          </ModeAndModeOfOperationFilter>
        </Params>
      </OJPTripRequest>
    </siri:ServiceRequest>
  </OJPRequest>
</OJP>
"""


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _text(node: Optional[ET.Element], path: str) -> Optional[str]:
    if node is None:
        return None
    found = node.find(path, OJP_NS)
    if found is None or found.text is None:
        return None
    return found.text.strip()


class OjpRoutingBackend(RoutingBackend):
    """
    Trip planning against an OJP 2.0 endpoint.

    The HTTP client is created on first use and reused for later calls.
    """

    NUMBER_OF_RESULTS = 3

    def __init__(
        self,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        requestor_ref: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        config = load_config()
        self.api_key = config.ojp_api_key if api_key is None else api_key
        self.endpoint = endpoint or config.ojp_endpoint
        self.requestor_ref = requestor_ref or config.ojp_requestor_ref
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def is_configured(self) -> bool:
        return bool(self.api_key) and self.api_key != PLACEHOLDER_API_KEY

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=15.0, transport=self._transport)
        return self._client

    def build_trip_request(
        self, origin: Coordinates, destination: Coordinates, arrive_by: datetime
    ) -> str:
        return TRIP_REQUEST_TEMPLATE.format(
            timestamp=_iso(datetime.now(timezone.utc)),
            requestor_ref=escape(self.requestor_ref),
            origin_lon=origin.longitude,
            origin_lat=origin.latitude,
            dest_lon=destination.longitude,
            dest_lat=destination.latitude,
            arrive_by=_iso(arrive_by),
            results=self.NUMBER_OF_RESULTS,
        )

    async def plan_trips(
        self,
        origin: Coordinates,
        destination: Coordinates,
        arrive_by: datetime,
    ) -> List[Dict[str, Any]]:
        body = self.build_trip_request(origin, destination, arrive_by)
        response = await self._get_client().post(
            self.endpoint,
            content=body.encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/xml",
                "Accept": "application/xml",
            },
        )
        response.raise_for_status()
        return parse_trip_response(response.text)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def parse_trip_response(xml_text: str) -> List[Dict[str, Any]]:
    """Extract trips from an OJP TripDelivery document, best first."""
    root = ET.fromstring(xml_text)
    delivery = root.find(".//ojp:OJPTripDelivery", OJP_NS)
    if delivery is None:
        return []

    error = _text(delivery, "siri:ErrorCondition/siri:Description")
    if error:
        logger.info(f"[DEPARTURE] OJP trip delivery reported: {error}")

    trips: List[Dict[str, Any]] = []
    for trip_node in delivery.findall("ojp:TripResult/ojp:Trip", OJP_NS):
        legs: List[Dict[str, Any]] = []
        for leg_node in trip_node.findall("ojp:Leg", OJP_NS):
            timed = leg_node.find("ojp:TimedLeg", OJP_NS)
            if timed is not None:
                legs.append({
                    "kind": "timed",
                    "board_stop": _text(timed, "ojp:LegBoard/ojp:StopPointName/ojp:Text") or "",
                    "alight_stop": _text(timed, "ojp:LegAlight/ojp:StopPointName/ojp:Text") or "",
                    "departure": _text(timed, "ojp:LegBoard/ojp:ServiceDeparture/ojp:TimetabledTime"),
                    "arrival": _text(timed, "ojp:LegAlight/ojp:ServiceArrival/ojp:TimetabledTime"),
                    "line": _text(timed, "ojp:Service/ojp:PublishedServiceName/ojp:Text"),
                    "direction": _text(timed, "ojp:Service/ojp:DestinationText/ojp:Text"),
                    "pt_mode": _text(timed, "ojp:Service/ojp:Mode/ojp:PtMode"),
                })
                continue

            walk = leg_node.find("ojp:ContinuousLeg", OJP_NS)
            if walk is None:
                walk = leg_node.find("ojp:TransferLeg", OJP_NS)
            if walk is not None:
                legs.append({
                    "kind": "continuous",
                    "duration": _text(walk, "ojp:Duration") or _text(leg_node, "ojp:Duration") or "PT0M",
                })

        trips.append({
            "duration": _text(trip_node, "ojp:Duration") or "PT0M",
            "start_time": _text(trip_node, "ojp:StartTime"),
            "end_time": _text(trip_node, "ojp:EndTime"),
            "legs": legs,
        })
    return trips
