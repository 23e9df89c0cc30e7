"""
Market rate lookup for facility cost inputs.

Wraps an external fetch callable (city, state -> rates) with a TTLCache so
repeated planning runs reuse recent quotes, and fills lease/operating rates
that facility records leave empty.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Union

from .cache import TTLCache
from .config import CacheSettings, MarketFallback
from .models import Facility
from .utils import to_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketRate:
    city: str
    state: str
    warehouse_lease_rate_per_sqft: float
    operating_cost_per_sqft: Optional[float] = None
    hourly_wage_rate: Optional[float] = None
    fully_burdened_rate: Optional[float] = None
    confidence_score: Optional[float] = None
    data_source: str = ""
    last_updated: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketRate":
        lease = to_number(data.get("warehouse_lease_rate_per_sqft"))
        if lease is None or lease < 0:
            raise ValueError(f"Market data for {data.get('city')}, {data.get('state')} has no valid lease rate")
        return cls(
            city=str(data.get("city", "")),
            state=str(data.get("state", "")),
            warehouse_lease_rate_per_sqft=lease,
            operating_cost_per_sqft=to_number(data.get("operating_cost_per_sqft")),
            hourly_wage_rate=to_number(data.get("hourly_wage_rate")),
            fully_burdened_rate=to_number(data.get("fully_burdened_rate")),
            confidence_score=to_number(data.get("confidence_score")),
            data_source=str(data.get("data_source", "")),
            last_updated=str(data.get("last_updated", "")),
        )

    @classmethod
    def fallback(cls, city: str, state: str) -> "MarketRate":
        return cls(
            city=city,
            state=state,
            warehouse_lease_rate_per_sqft=MarketFallback.WAREHOUSE_LEASE_RATE_PER_SQFT,
            hourly_wage_rate=MarketFallback.HOURLY_WAGE_RATE,
            fully_burdened_rate=MarketFallback.FULLY_BURDENED_RATE,
            confidence_score=MarketFallback.CONFIDENCE_SCORE,
            data_source=MarketFallback.DATA_SOURCE,
            last_updated=date.today().isoformat(),
        )


Fetcher = Callable[[str, str], Union[MarketRate, Dict[str, Any]]]


def market_key(city: str, state: str) -> str:
    return f"{city.lower().strip()}_{state.lower().strip()}"


class MarketRateBook:
    """
    Cached market-rate lookups.

    Args:
        fetcher: Callable returning a MarketRate (or its dict form) for a city/state
        cache: Shared TTLCache; a private one with the market TTL is made if omitted
    """

    def __init__(self, fetcher: Fetcher, cache: Optional[TTLCache] = None):
        self._fetcher = fetcher
        self._cache = cache if cache is not None else TTLCache(CacheSettings.MARKET_RATE_TTL_SECONDS)
        self.hits = 0
        self.misses = 0

    def get(self, city: str, state: str, force_refresh: bool = False) -> MarketRate:
        """
        Rate for a location, from cache when fresh.

        A failing fetch yields the fallback rate, which is not cached.
        """
        key = market_key(city, state)
        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not None:
                self.hits += 1
                return cached

        self.misses += 1
        try:
            raw = self._fetcher(city, state)
        except (OSError, ValueError, RuntimeError) as exc:
            logger.warning("market data fetch failed for %s, %s: %s", city, state, exc)
            return MarketRate.fallback(city, state)

        rate = raw if isinstance(raw, MarketRate) else MarketRate.from_dict(raw)
        self._cache.set(key, rate)
        return rate

    def get_many(self, locations: List[Dict[str, str]], force_refresh: bool = False) -> List[MarketRate]:
        return [self.get(loc["city"], loc["state"], force_refresh=force_refresh) for loc in locations]

    def fill_facility_rates(self, facilities: List[Facility]) -> List[Facility]:
        """
        Copies of the facilities with missing lease/operating rates filled in.

        Facilities without a city/state are returned unchanged.
        """
        filled = []
        for facility in facilities:
            needs_lease = facility.lease_rate_per_sqft is None
            needs_operating = facility.operating_cost_per_sqft is None
            if not (needs_lease or needs_operating) or not facility.city or not facility.state:
                filled.append(facility)
                continue

            rate = self.get(facility.city, facility.state)
            updates = {}
            if needs_lease:
                updates["lease_rate_per_sqft"] = rate.warehouse_lease_rate_per_sqft
            if needs_operating and rate.operating_cost_per_sqft is not None:
                updates["operating_cost_per_sqft"] = rate.operating_cost_per_sqft
            filled.append(replace(facility, **updates))
        return filled
