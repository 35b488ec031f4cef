"""Distance resolution for the invoicing engine.

One distance value is resolved per route. Multi-stop routes are measured
along the chain of stops in visiting order (pickup before dropoff for each
order), never as a sum of the per-order distance fields, because stops share
waypoints. Lookups go to an injected collaborator and run in bounded waves;
a failed lookup degrades that route only.
"""

import asyncio
import inspect
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from .exceptions import DistanceResolutionError, GenerationCancelled, ValidationError
from .geo import normalize_address
from .route_organizer import Route, visit_sequence
from .schemas import is_empty_value

logger = logging.getLogger(__name__)

DEFAULT_LOOKUP_CONCURRENCY = 5

# Addresses in visiting order -> driving distance in miles
DistanceCalculator = Callable[[list[str]], Union[float, Awaitable[float]]]
ProgressCallback = Callable[[int, int], None]


class DistanceSource(str, Enum):
    """Where a resolved distance came from."""

    ORDER = "order"
    LOOKUP = "lookup"
    CACHE = "cache"
    UNRESOLVED = "unresolved"


@dataclass
class DistanceResolution:
    """Distance outcome for one route.

    Attributes:
        route_key: Key of the route this distance belongs to.
        distance: Miles; 0.0 when unresolved.
        resolved: False when the lookup failed and the route is flagged.
        source: Where the distance came from.
        error: Failure reason for unresolved routes.
    """

    route_key: str
    distance: float
    resolved: bool
    source: DistanceSource
    error: Optional[str] = None


class DistanceCache:
    """In-memory route distance cache.

    Entries are keyed by the route's order ids together with its waypoints
    in visiting order, so editing an address invalidates the entry.
    """

    def __init__(self):
        self._entries: dict[tuple[tuple[str, ...], tuple[str, ...]], float] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key_for(route: Route) -> tuple[tuple[str, ...], tuple[str, ...]]:
        waypoints = tuple(address.lower() for address in route_waypoints(route))
        return tuple(route.order_ids), waypoints

    def get(self, route: Route) -> Optional[float]:
        value = self._entries.get(self.key_for(route))
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def set(self, route: Route, miles: float) -> None:
        self._entries[self.key_for(route)] = miles

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        return size

    def __len__(self) -> int:
        return len(self._entries)


def route_waypoints(route: Route) -> list[str]:
    """Addresses of a route in visiting order.

    Pickup comes before dropoff for each order. Empty addresses are skipped
    and consecutive repeats of the same address collapse into one waypoint.
    """
    waypoints: list[str] = []
    for order in visit_sequence(route):
        for address in (order.pickup, order.dropoff):
            if is_empty_value(address):
                continue
            cleaned = normalize_address(address)
            if waypoints and waypoints[-1].lower() == cleaned.lower():
                continue
            waypoints.append(cleaned)
    return waypoints


async def _call_calculator(calculator: DistanceCalculator, addresses: list[str]):
    if inspect.iscoroutinefunction(calculator) or inspect.iscoroutinefunction(
        getattr(calculator, "__call__", None)
    ):
        result = calculator(addresses)
    else:
        # Blocking collaborators run off the event loop
        result = await asyncio.to_thread(calculator, addresses)
    if inspect.isawaitable(result):
        result = await result
    return result


async def lookup_distance(route: Route, calculator: DistanceCalculator) -> float:
    """Ask the collaborator for the driving distance of a route.

    Raises:
        DistanceResolutionError: If the route cannot be measured.
    """
    waypoints = route_waypoints(route)
    if len(waypoints) < 2:
        raise DistanceResolutionError(
            route.route_key, "route needs at least a pickup and a dropoff address"
        )

    try:
        miles = await _call_calculator(calculator, waypoints)
    except Exception as e:
        raise DistanceResolutionError(route.route_key, str(e) or type(e).__name__) from e

    try:
        miles = float(miles)
    except (TypeError, ValueError):
        raise DistanceResolutionError(route.route_key, f"lookup returned {miles!r}")
    if not math.isfinite(miles) or miles < 0:
        raise DistanceResolutionError(route.route_key, f"lookup returned {miles}")
    return miles


async def resolve_distance(
    route: Route,
    calculator: DistanceCalculator,
    cache: Optional[DistanceCache] = None,
) -> DistanceResolution:
    """Resolve the distance of one route without raising on lookup failure.

    Single-stop routes use the distance already attached to the order when
    there is one; everything else is looked up along the route waypoints.

    Args:
        route: The route to measure.
        calculator: Distance-lookup collaborator.
        cache: Optional cache of earlier lookups.

    Returns:
        DistanceResolution; unresolved routes carry distance 0.0 and the reason.
    """
    if route.stops == 1 and route.orders[0].known_distance is not None:
        return DistanceResolution(
            route_key=route.route_key,
            distance=float(route.orders[0].known_distance),
            resolved=True,
            source=DistanceSource.ORDER,
        )

    if cache is not None:
        cached = cache.get(route)
        if cached is not None:
            return DistanceResolution(
                route_key=route.route_key,
                distance=cached,
                resolved=True,
                source=DistanceSource.CACHE,
            )

    try:
        miles = await lookup_distance(route, calculator)
    except DistanceResolutionError as e:
        logger.warning("%s", e)
        return DistanceResolution(
            route_key=route.route_key,
            distance=0.0,
            resolved=False,
            source=DistanceSource.UNRESOLVED,
            error=e.reason,
        )

    if cache is not None:
        cache.set(route, miles)
    return DistanceResolution(
        route_key=route.route_key,
        distance=miles,
        resolved=True,
        source=DistanceSource.LOOKUP,
    )


async def resolve_route_distances(
    routes: list[Route],
    calculator: DistanceCalculator,
    on_progress: Optional[ProgressCallback] = None,
    concurrency: int = DEFAULT_LOOKUP_CONCURRENCY,
    should_cancel: Optional[Callable[[], bool]] = None,
    on_wave_complete: Optional[ProgressCallback] = None,
    cache: Optional[DistanceCache] = None,
) -> list[DistanceResolution]:
    """Resolve distances for all routes in bounded waves.

    Each wave runs up to ``concurrency`` lookups at once and is awaited as a
    whole before the next starts. Control returns to the event loop between
    waves, which is also where cancellation is checked.

    Args:
        routes: Routes in discovery order.
        calculator: Distance-lookup collaborator.
        on_progress: Called with (current, total) once per completed route,
            in increasing order.
        concurrency: Maximum outstanding lookups.
        should_cancel: Polled before each wave; True aborts generation.
        on_wave_complete: Called with (current, total) after each wave.
        cache: Optional cache of earlier lookups.

    Returns:
        One DistanceResolution per route, in the same order as ``routes``.

    Raises:
        ValidationError: If concurrency is below 1.
        GenerationCancelled: If should_cancel() returned True.
    """
    if concurrency < 1:
        raise ValidationError(f"Lookup concurrency must be at least 1, got {concurrency}")

    total = len(routes)
    results: list[DistanceResolution] = []

    for start in range(0, total, concurrency):
        if should_cancel is not None and should_cancel():
            logger.info("Distance resolution cancelled after %d of %d routes", len(results), total)
            raise GenerationCancelled(len(results), total)

        wave = routes[start:start + concurrency]
        wave_results = await asyncio.gather(
            *(resolve_distance(route, calculator, cache) for route in wave)
        )
        for resolution in wave_results:
            results.append(resolution)
            if on_progress is not None:
                on_progress(len(results), total)

        if on_wave_complete is not None:
            on_wave_complete(len(results), total)
        await asyncio.sleep(0)

    return results
