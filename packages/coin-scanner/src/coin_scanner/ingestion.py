"""
Ingestion facade: the single entry point UI collaborators call.

Owns the scan lifecycle (start, refresh, cancel), retries systemic scan
failures with exponential backoff, enriches decoded events with metadata and
publishes the de-duplicated coin set plus a status tuple.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any

from web3 import Web3

from .config import MetadataConfig, ScanConfig
from .event_decoder import EventDecoder
from .metadata import MetadataResolver
from .models import UNKNOWN_ARTIST, CoinCreatedEvent, MusicCoin, RawLog, ScanStatus, TrackMetadata
from .scanner import BlockRangeScanner
from .utils.backoff import BackoffPolicy

logger = logging.getLogger(__name__)

Listener = Callable[[list[MusicCoin], ScanStatus], None]


def build_coin(
    event: CoinCreatedEvent,
    metadata: TrackMetadata | None,
    default_cover_art: str = ""
) -> MusicCoin:
    """Combine a decoded event with its (optional) metadata document."""
    if metadata is None:
        return MusicCoin(
            coin_address=event.coin_address,
            name=event.name,
            symbol=event.symbol,
            description="",
            artist_name=UNKNOWN_ARTIST,
            artist_address=event.payout_recipient,
            creator=event.creator,
            cover_art=default_cover_art,
            audio_url="",
            metadata_uri=event.uri,
            block_number=event.block_number,
        )

    return MusicCoin(
        coin_address=event.coin_address,
        name=event.name,
        symbol=event.symbol,
        description=metadata.description or f"Token created by {event.payout_recipient}",
        artist_name=metadata.artist_name or UNKNOWN_ARTIST,
        artist_address=event.payout_recipient,
        creator=event.creator,
        cover_art=metadata.image or default_cover_art,
        audio_url=metadata.animation_url,
        metadata_uri=event.uri,
        block_number=event.block_number,
        metadata=metadata.raw,
    )


def merge_coin(coins: dict[str, MusicCoin], coin: MusicCoin) -> None:
    """
    Merge a coin into a set keyed by coin address.

    A later record replaces an earlier one only when it is complete.
    """
    key = coin.coin_address.lower()
    if key not in coins or coin.is_complete:
        coins[key] = coin


def merge_coins(coins: Iterable[MusicCoin]) -> dict[str, MusicCoin]:
    merged: dict[str, MusicCoin] = {}
    for coin in coins:
        merge_coin(merged, coin)
    return merged


class CoinIngestion:
    """
    Runs ingestion sessions and publishes their results.

    Cancellation is cooperative: every session captures the generation token
    it was started under, and its results are only applied while that token
    is still current. In-flight network calls are never torn down.
    """

    def __init__(
        self,
        scanner: BlockRangeScanner,
        resolver: MetadataResolver,
        decoder: EventDecoder | None = None,
        scan_config: ScanConfig | None = None,
        metadata_config: MetadataConfig | None = None,
        retry_policy: BackoffPolicy | None = None
    ) -> None:
        """
        Initialize the facade.

        Args:
            scanner: Block range scanner
            resolver: Metadata resolver
            decoder: Event decoder (a fresh one by default)
            scan_config: Scan settings (defaults to the scanner's)
            metadata_config: Metadata settings (defaults to the resolver's)
            retry_policy: Whole-scan retry policy (defaults from scan_config)
        """
        self.scanner = scanner
        self.resolver = resolver
        self.decoder = decoder or EventDecoder()
        self.scan_config = scan_config or scanner.config
        self.metadata_config = metadata_config or resolver.config
        self.retry_policy = retry_policy or BackoffPolicy(
            max_attempts=self.scan_config.retry_count + 1,
            base_delay=self.scan_config.retry_base_delay,
        )

        self.generation = 0
        self.status = ScanStatus()
        self._coins: dict[str, MusicCoin] = {}
        self._listeners: list[Listener] = []
        self._tasks: set[asyncio.Task] = set()
        self._fetch_semaphore = asyncio.Semaphore(self.metadata_config.max_concurrent_fetches)

    @property
    def coins(self) -> list[MusicCoin]:
        """Published coins ordered by block number."""
        return sorted(self._coins.values(), key=lambda coin: (coin.block_number, coin.coin_address))

    def get_coin(self, address: str) -> MusicCoin | None:
        return self._coins.get(address.lower())

    def coins_by_artist(self, address: str) -> list[MusicCoin]:
        """Published coins whose payout recipient is the given address."""
        if not Web3.is_address(address):
            raise ValueError(f"Invalid address: {address}")
        wanted = address.lower()
        return [coin for coin in self.coins if coin.artist_address.lower() == wanted]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with (coins, status) on every update.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> list[MusicCoin]:
        """Run an ingestion session under a new generation token."""
        return await self._run(self._next_generation())

    async def refresh(self) -> list[MusicCoin]:
        """Explicit re-scan trigger; replaces the coin set wholesale."""
        logger.info("Refreshing coins")
        return await self.start()

    def schedule_refresh(self) -> int:
        """
        Start a refresh in the background.

        Returns:
            The generation token of the scheduled session
        """
        generation = self._next_generation()
        task = asyncio.create_task(self._run(generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return generation

    def cancel(self) -> None:
        """Invalidate any in-flight session; its results will be discarded."""
        generation = self._next_generation()
        logger.info(f"Cancelled ingestion (now at generation {generation})")
        self._set_status(generation, loading=False, progress_message=None)

    def _next_generation(self) -> int:
        self.generation += 1
        return self.generation

    def _is_current(self, generation: int) -> bool:
        return generation == self.generation

    async def _run(self, generation: int) -> list[MusicCoin]:
        self._set_status(generation, loading=True, error=None, progress_message="Starting scan...")

        # One metadata lookup per URI for the whole session, failures included
        lookups: dict[str, asyncio.Future] = {}
        partials: list[asyncio.Task] = []

        def on_progress(message: str) -> None:
            self._set_status(generation, progress_message=message)

        def on_logs(logs: list[RawLog]) -> None:
            partials.append(self._publish_partial(generation, logs, lookups))

        def on_retry(attempt: int, delay: float, error: BaseException) -> None:
            logger.warning(
                f"Scan attempt {attempt}/{self.retry_policy.max_attempts} failed: {error}. "
                f"Retrying after {delay:g}s"
            )
            self._set_status(
                generation,
                error=str(error),
                progress_message=f"Error occurred. Retrying in {delay:g} seconds...",
            )

        try:
            raw_logs = await self.retry_policy.run(
                lambda: self.scanner.scan(on_progress=on_progress, on_logs=on_logs),
                on_retry=on_retry,
            )
        except Exception as e:
            logger.error(f"Error fetching coins: {e}", exc_info=True)
            self._set_status(
                generation,
                loading=False,
                error=(
                    f"Failed to fetch coins from the chain after "
                    f"{self.retry_policy.max_attempts} attempts: {e}"
                ),
                progress_message=None,
            )
            return self.coins

        events = self.decoder.decode_all(raw_logs)
        self._set_status(generation, progress_message=f"Processing metadata for {len(events)} coins...")
        coins = merge_coins(await self._enrich(events, lookups))
        # Early enrichment must land before the wholesale replace below
        await asyncio.gather(*partials)

        if not self._is_current(generation):
            logger.debug(f"Discarding results of stale generation {generation}")
            return self.coins

        self._coins = coins
        logger.info(f"Published {len(coins)} coins (generation {generation})")
        self._set_status(generation, loading=False, error=None, progress_message=None)
        return self.coins

    def _publish_partial(
        self,
        generation: int,
        logs: list[RawLog],
        lookups: dict[str, asyncio.Future]
    ) -> asyncio.Task:
        """
        Publish coins from a known window straight away.

        Coins go out without metadata first; enrichment runs in a background
        task so the scan is never held up by metadata lookups.

        Returns:
            The enrichment task
        """
        events = self.decoder.decode_all(logs)
        if events and self._is_current(generation):
            for event in events:
                merge_coin(self._coins, build_coin(event, None, self.metadata_config.default_cover_art))
            logger.info(f"Published {len(events)} coins from known blocks")
            self._notify()

        task = asyncio.create_task(self._enrich_partial(generation, events, lookups))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _enrich_partial(
        self,
        generation: int,
        events: list[CoinCreatedEvent],
        lookups: dict[str, asyncio.Future]
    ) -> None:
        coins = await self._enrich(events, lookups)
        if not coins or not self._is_current(generation):
            return
        for coin in coins:
            merge_coin(self._coins, coin)
        self._notify()

    async def _enrich(
        self,
        events: list[CoinCreatedEvent],
        lookups: dict[str, asyncio.Future] | None = None
    ) -> list[MusicCoin]:
        if lookups is None:
            lookups = {}
        return list(await asyncio.gather(*(self._build(event, lookups) for event in events)))

    async def _build(self, event: CoinCreatedEvent, lookups: dict[str, asyncio.Future]) -> MusicCoin:
        metadata = await self._lookup(event.uri, lookups)
        return build_coin(event, metadata, self.metadata_config.default_cover_art)

    async def _lookup(self, uri: str, lookups: dict[str, asyncio.Future]) -> TrackMetadata | None:
        future = lookups.get(uri)
        if future is None:
            future = asyncio.ensure_future(self._resolve(uri))
            lookups[uri] = future
        # Shielded so one waiter going away does not cancel the shared lookup
        return await asyncio.shield(future)

    async def _resolve(self, uri: str) -> TrackMetadata | None:
        try:
            async with self._fetch_semaphore:
                return await self.resolver.resolve(uri)
        except Exception as e:
            logger.error(f"Failed to fetch metadata for {uri}: {e}", exc_info=True)
            return None

    def _set_status(self, generation: int, **changes: Any) -> None:
        if not self._is_current(generation):
            return
        self.status = self.status.evolve(generation=generation, **changes)
        self._notify()

    def _notify(self) -> None:
        coins = self.coins
        for listener in list(self._listeners):
            try:
                listener(coins, self.status)
            except Exception as e:
                logger.error(f"Listener failed: {e}", exc_info=True)

    def get_stats(self) -> dict[str, Any]:
        return {
            "generation": self.generation,
            "coins": len(self._coins),
            "status": self.status.to_dict(),
            "decoder": self.decoder.get_metrics(),
            "metadata": self.resolver.get_stats(),
        }
