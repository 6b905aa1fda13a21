"""
Block range scanner for historical factory events.

Splits the ledger history into fixed-size windows, probes known windows
first, then queries the remaining windows in bounded parallel groups through
the RPC gateway, reusing cached batches where possible.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

from .config import ScanConfig
from .event_decoder import address_topic, coin_created_topic
from .gateway import GatewayService, RpcCallError
from .models import BlockRange, GetLogsRequest, RawLog
from .utils.ttl_cache import MISS, RangeCache

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
LogsCallback = Callable[[list[RawLog]], Awaitable[None] | None]


class ScanError(RuntimeError):
    """Systemic scan failure (e.g. the latest block cannot be resolved)."""


@dataclass
class ScanStats:
    """Counters for a single scan; each scan() call owns its own instance."""
    latest_block: int | None = None
    windows_scanned: int = 0
    cache_hits: int = 0
    failed_windows: int = 0
    malformed_logs: int = 0
    consecutive_empty: int = 0
    max_consecutive_empty: int = 0
    logs_found: int = 0
    in_flight: int = 0
    max_in_flight: int = 0

    def track_empty(self, logs: list[RawLog]) -> None:
        # Diagnostics only; the scan always walks to the latest block
        if logs:
            self.consecutive_empty = 0
        else:
            self.consecutive_empty += 1
            self.max_consecutive_empty = max(self.max_consecutive_empty, self.consecutive_empty)

    def to_dict(self) -> dict[str, Any]:
        stats = asdict(self)
        del stats["consecutive_empty"], stats["in_flight"]
        return stats


def build_windows(start_block: int, latest_block: int, window_size: int) -> list[BlockRange]:
    """
    Partition [start_block, latest_block] into contiguous windows.

    Every window holds at most window_size blocks; the last one is clipped to
    latest_block. Returns an empty list when start_block is past latest_block.
    """
    if window_size <= 0:
        raise ValueError(f"Window size must be positive, got {window_size}")
    if start_block < 0:
        raise ValueError(f"Start block must be non-negative, got {start_block}")

    windows = []
    current = start_block
    while current <= latest_block:
        end = min(current + window_size - 1, latest_block)
        windows.append(BlockRange(current, end))
        current = end + 1
    return windows


class BlockRangeScanner:
    """
    Pagination engine for eth_getLogs over the full chain history.

    Concurrency is bounded by a semaphore of size parallel_batches and a
    join barrier per group, so at most parallel_batches range queries are in
    flight at any time.
    """

    def __init__(
        self,
        gateway: GatewayService,
        config: ScanConfig,
        range_cache: RangeCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> None:
        """
        Initialize the scanner.

        Args:
            gateway: Shared RPC gateway
            config: Scan settings (factory, filter, window size, parallelism)
            range_cache: Optional pre-built range cache (defaults from config)
            sleep: Awaitable sleep, injectable for tests
        """
        self.gateway = gateway
        self.config = config
        self.range_cache = range_cache or RangeCache(ttl=config.range_ttl)
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(config.parallel_batches)

        self.topics: tuple[str | None, ...] = (
            coin_created_topic(),
            None,
            None,
            address_topic(config.platform_referrer),
        )

        # Stats of the most recently finished scan
        self.last_scan: ScanStats | None = None
        self.scans_started = 0
        self.scans_running = 0

    async def scan(
        self,
        start_block: int | None = None,
        on_progress: ProgressCallback | None = None,
        on_logs: LogsCallback | None = None
    ) -> list[RawLog]:
        """
        Scan from start_block to the latest block.

        Args:
            start_block: First block to scan (defaults to the configured one)
            on_progress: Receives human-readable progress messages
            on_logs: Receives logs found in known windows as soon as they arrive

        Returns:
            De-duplicated logs ordered by (block number, log index)

        Raises:
            ScanError: If the latest block cannot be resolved
        """
        stats = ScanStats()
        self.scans_started += 1
        self.scans_running += 1
        try:
            return await self._scan(stats, start_block, on_progress, on_logs)
        finally:
            self.scans_running -= 1
            self.last_scan = stats

    async def _scan(
        self,
        stats: ScanStats,
        start_block: int | None,
        on_progress: ProgressCallback | None,
        on_logs: LogsCallback | None
    ) -> list[RawLog]:
        start = self.config.start_block if start_block is None else start_block

        def progress(message: str) -> None:
            logger.debug(message)
            if on_progress is not None:
                on_progress(message)

        progress("Getting latest block number...")
        try:
            latest_block = await self.gateway.get_block_number()
        except RpcCallError as e:
            raise ScanError(f"Could not resolve latest block: {e}") from e
        stats.latest_block = latest_block
        logger.info(f"Scanning blocks {start}..{latest_block}")

        collected: dict[tuple[int, int], RawLog] = {}

        # Known windows first, so callers can show partial results early
        for window in self._known_windows(start, latest_block):
            progress(f"Checking known block range {window}...")
            logs = await self._fetch_window(window, stats)
            if logs:
                logger.info(f"Found {len(logs)} logs in known block range {window}")
                self._merge(collected, logs)
                if on_logs is not None:
                    result = on_logs(logs)
                    if asyncio.iscoroutine(result):
                        await result
            await self._sleep(self.config.known_block_delay)

        windows = build_windows(start, latest_block, self.config.window_size)
        group_size = self.config.parallel_batches
        total_groups = (len(windows) + group_size - 1) // group_size

        for group_index in range(total_groups):
            group = windows[group_index * group_size:(group_index + 1) * group_size]
            progress(
                f"Fetching events (block {group[0].start} to {group[-1].end})... "
                f"Batch {group_index + 1}/{total_groups}"
            )

            # gather keeps window order regardless of completion order
            results = await asyncio.gather(*(self._fetch_window(window, stats) for window in group))
            for logs in results:
                stats.track_empty(logs)
                if logs:
                    self._merge(collected, logs)

            if group_index + 1 < total_groups:
                await self._sleep(self.config.batch_delay)

        ordered = sorted(collected.values(), key=lambda log: log.unique_key)
        stats.logs_found = len(ordered)
        progress(f"Found a total of {len(ordered)} events. Processing metadata...")
        self.log_metrics(stats)
        return ordered

    def _known_windows(self, start: int, latest_block: int) -> list[BlockRange]:
        windows = []
        for block in sorted(set(self.config.known_blocks)):
            if start <= block <= latest_block:
                end = min(block + self.config.window_size - 1, latest_block)
                windows.append(BlockRange(block, end))
        return windows

    async def _fetch_window(self, window: BlockRange, stats: ScanStats) -> list[RawLog]:
        """
        Fetch one window, from the range cache when possible.

        A failed window is logged, counted and treated as empty.
        """
        stats.windows_scanned += 1

        cached = self.range_cache.get(window)
        if cached is not MISS:
            logger.debug(f"Using cached data for blocks {window}")
            stats.cache_hits += 1
            return cached

        request = GetLogsRequest(
            address=self.config.factory_address,
            topics=self.topics,
            from_block=window.start,
            to_block=window.end,
        )

        async with self._semaphore:
            stats.in_flight += 1
            stats.max_in_flight = max(stats.max_in_flight, stats.in_flight)
            try:
                entries = await self.gateway.get_logs(request)
            except RpcCallError as e:
                stats.failed_windows += 1
                logger.warning(f"Error fetching logs from blocks {window}: {e}")
                return []
            finally:
                stats.in_flight -= 1

        logs = self._parse_entries(entries, window, stats)
        self.range_cache.put(window, logs)
        return logs

    def _parse_entries(self, entries: list[Any], window: BlockRange, stats: ScanStats) -> list[RawLog]:
        logs = []
        for entry in entries:
            try:
                logs.append(RawLog.from_rpc(entry))
            except ValueError as e:
                stats.malformed_logs += 1
                logger.warning(f"Skipping malformed log in blocks {window}: {e}")
        logs.sort(key=lambda log: log.unique_key)
        return logs

    @staticmethod
    def _merge(collected: dict[tuple[int, int], RawLog], logs: list[RawLog]) -> None:
        for log in logs:
            collected.setdefault(log.unique_key, log)

    def get_stats(self) -> dict[str, Any]:
        """
        Get statistics for the most recently finished scan.

        Returns:
            Dictionary with window, cache and concurrency metrics
        """
        stats = self.last_scan.to_dict() if self.last_scan is not None else {}
        stats.update({
            "scans_started": self.scans_started,
            "scans_running": self.scans_running,
            "range_cache": self.range_cache.get_stats(),
        })
        return stats

    def log_metrics(self, stats: ScanStats) -> None:
        """Log statistics for one scan."""
        logger.info(
            f"Scan Metrics: "
            f"Windows={stats.windows_scanned}, "
            f"CacheHits={stats.cache_hits}, "
            f"Failed={stats.failed_windows}, "
            f"MaxEmptyRun={stats.max_consecutive_empty}, "
            f"Logs={stats.logs_found}, "
            f"MaxInFlight={stats.max_in_flight}"
        )
