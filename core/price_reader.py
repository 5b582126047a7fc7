# price_reader.py

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Sequence, Tuple

from config.settings import VenueConfig
from core.chain import ChainReader
from core.utils import PriceReadError
from data_models import VenueQuote


class VenuePriceReader:
    """
    Reads pool reserves for every configured venue and turns them into
    comparable unit prices. No retries at this level: a failed read is the
    caller's signal to leave that venue out of the current cycle.
    """

    def __init__(self, chain_reader: ChainReader, venues: Sequence[VenueConfig], max_workers: int = 0):
        self.logger = logging.getLogger(__name__)
        self.chain_reader = chain_reader
        self.venues = list(venues)
        self.max_workers = max_workers or max(1, len(self.venues))

    def read(self, venue: VenueConfig) -> VenueQuote:
        try:
            reserves = self.chain_reader.get_reserves(venue.name, venue.pair_address)
        except Exception as e:
            raise PriceReadError(venue.name, f"reserve read failed: {e}") from e

        try:
            base_reserve = float(reserves[venue.base_reserve_index])
            quote_reserve = float(reserves[1 - venue.base_reserve_index])
        except (TypeError, ValueError, IndexError) as e:
            raise PriceReadError(venue.name, f"malformed reserves {reserves!r}") from e

        if base_reserve <= 0 or quote_reserve <= 0:
            raise PriceReadError(venue.name, f"empty pool (base={base_reserve}, quote={quote_reserve})")

        return VenueQuote(
            venue=venue.name,
            price_in_quote_asset=quote_reserve / base_reserve,
            price_in_base_asset=base_reserve / quote_reserve,
            base_reserve=base_reserve,
            quote_reserve=quote_reserve,
        )

    def read_all(self) -> Tuple[List[VenueQuote], Dict[str, str]]:
        """
        Read every venue concurrently. Returns the successful quotes in
        configured venue order plus a {venue: error} map of the ones dropped.
        """
        quotes: List[VenueQuote] = []
        failures: Dict[str, str] = {}
        if not self.venues:
            return quotes, failures

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="venue-read") as pool:
            futures = [(venue, pool.submit(self.read, venue)) for venue in self.venues]
            for venue, future in futures:
                try:
                    quotes.append(future.result())
                except PriceReadError as e:
                    failures[venue.name] = str(e)
                    self.logger.warning(f"Excluding {venue.name} from this cycle: {e}")

        for q in quotes:
            self.logger.debug(f"{q.venue}: {q.price_in_quote_asset:.8f} (inverse {q.price_in_base_asset:.8f})")
        return quotes, failures
