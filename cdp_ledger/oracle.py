"""
oracle.py - Price feeds and the oracle adapter used for collateral valuation

Classes:
- StaticPriceFeed: a single settable answer (like a mock aggregator)
- TimeSeriesPriceFeed: time-varying prices, latest observation at the clock time
- OracleAdapter: per-asset feed lookup, validity and staleness checks, and
  normalization of every price to FEED_PRECISION decimals

Prices are integers scaled by 10**decimals of their feed. The adapter never
retries and never caches: every call reads the feed, and any failure surfaces
as OracleUnavailable so the calling operation aborts.
"""

from __future__ import annotations
from bisect import bisect_right
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .core import (
    PriceFeed, PriceQuote, FEED_PRECISION,
    OracleUnavailable, StalePrice,
)


Clock = Callable[[], datetime]


class StaticPriceFeed:
    """
    Feed with one current answer, updated explicitly.

    Example:
        feed = StaticPriceFeed(2000 * 10**8, decimals=8)
        feed.update_answer(1800 * 10**8)
    """

    def __init__(self, answer: Optional[int], decimals: int = 8, updated_at: Optional[datetime] = None):
        self.decimals = decimals
        self.answer = answer
        self.updated_at = updated_at

    def latest_round(self) -> Optional[Tuple[int, Optional[datetime]]]:
        if self.answer is None:
            return None
        return self.answer, self.updated_at

    def update_answer(self, answer: Optional[int], updated_at: Optional[datetime] = None) -> None:
        """Replace the current answer (None simulates a feed with no data)."""
        self.answer = answer
        self.updated_at = updated_at

    def __repr__(self):
        return f"StaticPriceFeed({self.answer}, decimals={self.decimals})"


class TimeSeriesPriceFeed:
    """
    Feed with time-varying prices.

    Stores historical observations and answers with the most recent one at or
    before the clock's current time. The round's timestamp is the observation
    time, so staleness checks see how old the answer really is.

    Examples:
        feed = TimeSeriesPriceFeed(clock, decimals=8)
        feed.add_price(datetime(2025, 1, 15), 2000 * 10**8)

        feed = TimeSeriesPriceFeed(clock, [(t0, p0), (t1, p1)], decimals=8)
    """

    def __init__(
        self,
        clock: Clock,
        price_path: Optional[List[Tuple[datetime, int]]] = None,
        decimals: int = 8,
    ):
        self.clock = clock
        self.decimals = decimals
        self.price_history: List[Tuple[datetime, int]] = sorted(price_path or [], key=lambda x: x[0])

    def add_price(self, timestamp: datetime, price: int) -> None:
        """Add a price observation (kept in timestamp order)."""
        self.price_history.append((timestamp, price))
        self.price_history.sort(key=lambda x: x[0])

    def latest_round(self) -> Optional[Tuple[int, Optional[datetime]]]:
        """
        Get the observation at or before the clock time, or None.

        Uses binary search for O(log n) lookup.
        """
        if not self.price_history:
            return None
        timestamps = [ts for ts, _ in self.price_history]
        idx = bisect_right(timestamps, self.clock())
        if idx == 0:
            # No price at or before the current time
            return None
        timestamp, price = self.price_history[idx - 1]
        return price, timestamp

    def __repr__(self):
        return f"TimeSeriesPriceFeed({len(self.price_history)} observations, decimals={self.decimals})"


def normalize_price(price: int, feed_decimals: int) -> int:
    """Rescale a feed answer to FEED_PRECISION decimals (truncating extra digits)."""
    if feed_decimals <= FEED_PRECISION:
        return price * 10 ** (FEED_PRECISION - feed_decimals)
    return price // 10 ** (feed_decimals - FEED_PRECISION)


class OracleAdapter:
    """
    USD price lookup for registered collateral assets.

    Args:
        feeds: asset id -> PriceFeed
        max_age: Reject rounds older than this (None disables staleness checks)
        clock: Current-time source for staleness checks (default: datetime.now)
    """

    def __init__(
        self,
        feeds: Mapping[str, PriceFeed],
        max_age: Optional[timedelta] = None,
        clock: Optional[Clock] = None,
    ):
        self.feeds: Dict[str, PriceFeed] = dict(feeds)
        self.max_age = max_age
        self.clock = clock or datetime.now

    def price(self, asset_id: str) -> PriceQuote:
        """
        Return the current USD price of one unit of `asset_id`.

        Raises:
            OracleUnavailable: No feed, no data, or a non-positive price
            StalePrice: The round is older than max_age (or has no timestamp)
        """
        feed = self.feeds.get(asset_id)
        if feed is None:
            raise OracleUnavailable(f"No price feed for {asset_id}")

        round_data = feed.latest_round()
        if round_data is None:
            raise OracleUnavailable(f"Price feed for {asset_id} returned no data")
        answer, updated_at = round_data
        if answer is None or answer <= 0:
            raise OracleUnavailable(f"Price feed for {asset_id} returned invalid price {answer}")

        if self.max_age is not None:
            if updated_at is None:
                raise StalePrice(f"Price feed for {asset_id} has no round timestamp")
            age = self.clock() - updated_at
            if age > self.max_age:
                raise StalePrice(f"Price for {asset_id} is {age} old (max {self.max_age})")

        price = normalize_price(answer, feed.decimals)
        if price <= 0:
            raise OracleUnavailable(f"Price for {asset_id} rounds to zero at {FEED_PRECISION} decimals")
        return PriceQuote(asset_id=asset_id, price=price, decimals=FEED_PRECISION, updated_at=updated_at)

    def __repr__(self):
        return f"OracleAdapter({len(self.feeds)} feeds, max_age={self.max_age})"
