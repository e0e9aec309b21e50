"""
Venue Proximity & Clustering - pure domain logic.

Arrival detection suppresses notifications once the user is at the venue.
Clustering groups appointments at nearby venues into one notification unit.
"""

from typing import List, Sequence

from common.geo import Coordinates, distance, is_within

from .models import DEFAULT_VENUE_PROXIMITY_METERS, UpcomingAppointment, VenueCluster


def is_near_venue(
    user_location: Coordinates,
    venue_location: Coordinates,
    threshold_meters: float = DEFAULT_VENUE_PROXIMITY_METERS,
) -> bool:
    return is_within(user_location, venue_location, threshold_meters)


def should_notify(
    user_location: Coordinates,
    venue_location: Coordinates,
    threshold_meters: float = DEFAULT_VENUE_PROXIMITY_METERS,
) -> bool:
    """False once the user has physically arrived at the venue."""
    return not is_near_venue(user_location, venue_location, threshold_meters)


def distance_to_venue(user_location: Coordinates, venue_location: Coordinates) -> float:
    return distance(user_location, venue_location)


def find_nearby_venues(
    user_location: Coordinates,
    appointments: Sequence[UpcomingAppointment],
    threshold_meters: float = DEFAULT_VENUE_PROXIMITY_METERS,
) -> List[str]:
    """Ids of appointments whose venue is within the threshold."""
    return [
        a.id for a in appointments
        if is_near_venue(user_location, a.venue_location, threshold_meters)
    ]


def centroid(locations: Sequence[Coordinates]) -> Coordinates:
    """Arithmetic mean of the coordinates; (0, 0) for an empty sequence."""
    if not locations:
        return Coordinates(0.0, 0.0)
    return Coordinates(
        latitude=sum(loc.latitude for loc in locations) / len(locations),
        longitude=sum(loc.longitude for loc in locations) / len(locations),
    )


def build_cluster(members: Sequence[UpcomingAppointment]) -> VenueCluster:
    """Build a cluster from its (non-empty) member appointments."""
    if not members:
        raise ValueError("a cluster needs at least one appointment")
    return VenueCluster(
        appointment_ids=[m.id for m in members],
        centroid=centroid([m.venue_location for m in members]),
        venue_names=[m.venue_name for m in members],
        earliest_appointment_time=min(m.start_time for m in members),
    )


def cluster_nearby_venues(
    appointments: Sequence[UpcomingAppointment],
    threshold_meters: float = DEFAULT_VENUE_PROXIMITY_METERS,
) -> List[VenueCluster]:
    """
    Greedy single-pass clustering.

    Appointments are visited in start-time order. Each unclustered one seeds a
    cluster that absorbs every other unclustered appointment within the
    threshold of any current member, so clusters grow transitively.
    Every appointment ends up in exactly one cluster.

    Raises:
        ValueError: If threshold_meters is negative
    """
    if threshold_meters < 0:
        raise ValueError("threshold_meters must be >= 0")
    if not appointments:
        return []
    if len(appointments) == 1:
        return [build_cluster(appointments)]

    ordered = sorted(appointments, key=lambda a: a.start_time)
    clustered = set()
    clusters: List[VenueCluster] = []

    for seed in ordered:
        if seed.id in clustered:
            continue

        members = [seed]
        clustered.add(seed.id)

        grew = True
        while grew:
            grew = False
            for other in ordered:
                if other.id in clustered:
                    continue
                if any(is_within(m.venue_location, other.venue_location, threshold_meters) for m in members):
                    members.append(other)
                    clustered.add(other.id)
                    grew = True

        clusters.append(build_cluster(members))

    return clusters
