"""
workflow_engines.scheduling -- Provider ranking and slot search.

Responsibility:
    Pick the provider a rejected scheduling exception falls back to, and
    find the first free slot for a provider near a preferred start time.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The caller supplies the
    candidate list (with current appointment load), the occupied timestamps
    and "now".

Invariants enforced:
    - The excluded (just rejected) provider is never selected.
    - Candidates without a price for the procedure are never selected.
    - Ranking is total and deterministic: ties fall back to the provider
      reference.
    - Slot search tries exactly three instants, in order: preferred start,
      one hour later, same time on the next calendar day.
"""

from __future__ import annotations

import math
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from workflow_kernel.domain.scheduling import (
    ProviderAssignment,
    ProviderCandidate,
    ProviderRef,
    SchedulingPriority,
    SolicitationSnapshot,
)

EARTH_RADIUS_KM = 6371.0

PRICE_WEIGHT = 0.4
DISTANCE_WEIGHT = 0.4
LOAD_WEIGHT = 0.2


@dataclass(frozen=True)
class RankingParams:
    priority: SchedulingPriority = SchedulingPriority.COST
    max_distance_km: float = 50.0
    max_provider_load: int = 50
    price_ceiling: Decimal = Decimal("10000")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_to(
    solicitation: SolicitationSnapshot,
    candidate: ProviderCandidate,
) -> float | None:
    if not solicitation.has_location:
        return None
    if candidate.latitude is None or candidate.longitude is None:
        return None
    return haversine_km(
        solicitation.latitude,
        solicitation.longitude,
        candidate.latitude,
        candidate.longitude,
    )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def balanced_score(
    candidate: ProviderCandidate,
    distance_km: float | None,
    params: RankingParams,
) -> float:
    """Weighted score in [0, 1]; higher is better.

    A candidate with unknown distance gets the distance term of a provider
    at the edge of the search radius.
    """
    price_term = _clamp(1 - float(candidate.price) / float(params.price_ceiling))
    if distance_km is None:
        distance_term = 0.0
    else:
        distance_term = _clamp(1 - distance_km / params.max_distance_km)
    load_term = _clamp(1 - candidate.load / params.max_provider_load)
    return (
        PRICE_WEIGHT * price_term
        + DISTANCE_WEIGHT * distance_term
        + LOAD_WEIGHT * load_term
    )


def eligible_candidates(
    candidates: Iterable[ProviderCandidate],
    solicitation: SolicitationSnapshot,
    exclude: ProviderRef | None,
    params: RankingParams,
) -> list[tuple[ProviderCandidate, float | None]]:
    """Filter to priced candidates within range, minus the excluded one."""
    eligible = []
    for candidate in candidates:
        if exclude is not None and candidate.ref == exclude:
            continue
        if candidate.price is None:
            continue
        distance = distance_to(solicitation, candidate)
        if distance is not None and distance > params.max_distance_km:
            continue
        eligible.append((candidate, distance))
    return eligible


def _sort_key(
    priority: SchedulingPriority,
    candidate: ProviderCandidate,
    distance: float | None,
    params: RankingParams,
):
    far = math.inf if distance is None else distance
    ref = (candidate.ref.provider_type, str(candidate.ref.provider_id))
    if priority == SchedulingPriority.DISTANCE:
        return (far, candidate.price, ref)
    if priority == SchedulingPriority.AVAILABILITY:
        return (candidate.load, candidate.price, ref)
    if priority == SchedulingPriority.BALANCED:
        return (-balanced_score(candidate, distance, params), candidate.price, ref)
    return (candidate.price, far, ref)


def rank_candidates(
    candidates: Iterable[ProviderCandidate],
    solicitation: SolicitationSnapshot,
    exclude: ProviderRef | None = None,
    params: RankingParams | None = None,
) -> list[ProviderAssignment]:
    """All eligible candidates, best first."""
    params = params or RankingParams()
    eligible = eligible_candidates(candidates, solicitation, exclude, params)
    eligible.sort(key=lambda pair: _sort_key(params.priority, pair[0], pair[1], params))
    return [
        ProviderAssignment(
            candidate=candidate,
            priority=params.priority,
            distance_km=distance,
            score=(
                balanced_score(candidate, distance, params)
                if params.priority == SchedulingPriority.BALANCED
                else None
            ),
        )
        for candidate, distance in eligible
    ]


def select_fallback(
    candidates: Iterable[ProviderCandidate],
    solicitation: SolicitationSnapshot,
    exclude: ProviderRef | None = None,
    params: RankingParams | None = None,
) -> ProviderAssignment | None:
    """Best eligible candidate other than ``exclude``, or None."""
    ranked = rank_candidates(candidates, solicitation, exclude, params)
    return ranked[0] if ranked else None


def roll_forward(preferred_start: datetime, now: datetime) -> datetime:
    """Move a past start forward by whole days until it is after ``now``."""
    start = preferred_start
    if start <= now:
        days = (now - start).days + 1
        start = start + timedelta(days=days)
    return start


def slot_attempts(preferred_start: datetime) -> tuple[datetime, datetime, datetime]:
    return (
        preferred_start,
        preferred_start + timedelta(hours=1),
        preferred_start + timedelta(days=1),
    )


def find_free_slot(
    preferred_start: datetime,
    occupied: Collection[datetime],
) -> tuple[int, datetime] | None:
    """First free instant among the three attempts, with its 1-based index."""
    for attempt, start in enumerate(slot_attempts(preferred_start), start=1):
        if start not in occupied:
            return attempt, start
    return None
