# aggregator.py

import logging
from typing import Optional, Sequence

from core.price_reader import VenuePriceReader
from core.utils import InsufficientVenues
from data_models import PriceView, VenueQuote


class PriceAggregator:
    """Ranks per-venue quotes and measures the spread between the extremes."""

    def __init__(self, reader: Optional[VenuePriceReader] = None):
        self.logger = logging.getLogger(__name__)
        self.reader = reader

    @staticmethod
    def percentage_difference(highest: float, lowest: float) -> float:
        if lowest <= 0:
            raise ValueError("lowest price must be positive")
        return max(0.0, (highest - lowest) / lowest * 100.0)

    def aggregate(self, quotes: Sequence[VenueQuote]) -> PriceView:
        quotes = list(quotes)
        if len(quotes) < 2:
            raise InsufficientVenues(f"need at least 2 venue quotes, got {len(quotes)}")

        # sorted() is stable with reverse=True, so the first-listed venue wins ties
        ranked = sorted(quotes, key=lambda q: q.price_in_quote_asset, reverse=True)
        highest = ranked[0]
        lowest = min(ranked[1:], key=lambda q: q.price_in_quote_asset)
        pct = self.percentage_difference(highest.price_in_quote_asset, lowest.price_in_quote_asset)

        self.logger.info(
            f"Highest: {highest.venue} @ {highest.price_in_quote_asset:.8f} | "
            f"Lowest: {lowest.venue} @ {lowest.price_in_quote_asset:.8f} | "
            f"Spread: {pct:.2f}%"
        )
        return PriceView(highest=highest, lowest=lowest, percentage_difference=pct, ranked=ranked)

    def collect(self) -> PriceView:
        """Read all venues (dropping the ones that fail) and aggregate what is left."""
        if self.reader is None:
            raise RuntimeError("PriceAggregator.collect() needs a VenuePriceReader")
        quotes, failures = self.reader.read_all()
        if failures:
            self.logger.warning(f"{len(failures)} venue(s) excluded: {', '.join(sorted(failures))}")
        return self.aggregate(quotes)
