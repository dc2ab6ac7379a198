"""
On-device artifact cache.

The CacheManager is the single owner of cached files and their byte
accounting: every insertion, eviction and deletion goes through it.
Entries are persisted in ``index.json`` inside the cache directory.

Eviction keeps high-priority entries longest; within a priority the
entries with the lowest frequency/recency score go first.
"""

import asyncio
import hashlib
import json
import logging
import shutil
import time
from pathlib import Path
from typing import Callable

import httpx
from pydantic import ValidationError

from anonvideo.config import Settings
from anonvideo.errors import MalformedInputError, NetworkError, ProviderError, translate_os_error
from anonvideo.models.delivery import CacheEntry, CachePriority, CacheStats, CleanupResult

from .device import memory_pressure

logger = logging.getLogger(__name__)

INDEX_FILE = "index.json"

# Fractions of max size
EVICTION_TARGET = 0.7
FORCED_CLEANUP_THRESHOLD = 0.8
PRESSURE_TARGET = 0.5


def cache_key(uri: str) -> str:
    """Stable file-system key for an artifact URI."""
    return hashlib.sha256(uri.encode("utf-8")).hexdigest()[:24]


class CacheManager:
    """
    Size- and count-bounded artifact cache with hit-rate accounting.

    Lifecycle: ``init()`` loads the index and starts the memory pressure
    monitor, ``shutdown()`` stops it and saves the index.

    Example:
        cache = CacheManager(settings)
        await cache.init()
        path = await cache.cache_video("https://cdn.example/clip.mp4")
        hit = await cache.get_cached_video("https://cdn.example/clip.mp4")
        stats = cache.get_device_aware_cache_stats()
        await cache.shutdown()
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        memory_probe: Callable[[], float] = memory_pressure,
    ):
        """
        Initialize cache manager.

        Args:
            settings: Application settings (cache dir and limits)
            http_client: Client used for downloads (created if None)
            memory_probe: Returns used/total memory ratio
        """
        self.settings = settings
        self.cache_dir = settings.cache_dir
        self.max_size = settings.cache_max_size_bytes
        self.max_entries = settings.cache_max_entries
        self.preload_limit = max(1, settings.cache_preload_limit)
        self.memory_threshold = settings.memory_pressure_threshold
        self.memory_probe = memory_probe

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=120.0, follow_redirects=True)

        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._monitor: asyncio.Task | None = None
        self.total_requests = 0
        self.total_hits = 0

    # ═══════════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════════════════

    async def init(self) -> None:
        """Load the index and start memory pressure polling."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._load_index()
        if self._monitor is None and self.settings.memory_poll_interval > 0:
            self._monitor = asyncio.create_task(self._monitor_memory(), name="cache-memory-monitor")
        logger.info(f"Cache ready: {len(self._entries)} entries, {self.total_size / 1024 / 1024:.1f} MB")

    async def shutdown(self) -> None:
        """Stop polling, persist the index and close the HTTP client."""
        if self._monitor is not None:
            self._monitor.cancel()
            try:
                await self._monitor
            except asyncio.CancelledError:
                pass
            self._monitor = None
        self._save_index()
        if self._owns_client:
            await self.http_client.aclose()

    # ═══════════════════════════════════════════════════════════════════════════
    # Lookup and insertion
    # ═══════════════════════════════════════════════════════════════════════════

    @property
    def total_size(self) -> int:
        return sum(e.size for e in self._entries.values())

    @property
    def hit_rate(self) -> float:
        return self.total_hits / self.total_requests if self.total_requests else 0.0

    async def get_cached_video(
        self,
        uri: str,
        priority: CachePriority | None = None,
    ) -> Path | None:
        """
        Local path of a cached artifact.

        Counts towards the hit rate. An entry whose file disappeared is
        dropped and reported as a miss.

        Args:
            uri: Artifact URI
            priority: New priority for the entry, if given

        Returns:
            Cached file path, or None on a miss
        """
        async with self._lock:
            self.total_requests += 1
            entry = self._entries.get(cache_key(uri))
            if entry is None:
                return None

            path = Path(entry.local_path)
            if not path.exists():
                logger.debug(f"Cached file vanished: {path.name}")
                del self._entries[cache_key(uri)]
                return None

            self.total_hits += 1
            entry.last_access = time.time()
            entry.access_count += 1
            if priority is not None:
                entry.priority = CachePriority(priority)
            return path

    async def cache_video(
        self,
        uri: str,
        priority: CachePriority = CachePriority.NORMAL,
    ) -> Path:
        """
        Cache an artifact by URI, downloading or copying it on a miss.

        Args:
            uri: http(s) URL or local file path
            priority: Eviction priority

        Returns:
            Path of the cached copy

        Raises:
            MalformedInputError: If a local source does not exist
            NetworkError: If the download fails
        """
        cached = await self.get_cached_video(uri, priority)
        if cached is not None:
            return cached

        key = cache_key(uri)
        suffix = Path(uri.split("?", 1)[0]).suffix or ".mp4"
        target = self.cache_dir / f"{key}{suffix}"

        if uri.startswith(("http://", "https://")):
            await self._download(uri, target)
        else:
            source = Path(uri)
            if not source.exists():
                raise MalformedInputError(f"Cannot cache missing file: {uri}")
            try:
                await asyncio.to_thread(shutil.copy2, source, target)
            except OSError as e:
                raise translate_os_error(e, source) from e

        await self._add_entry(uri, target, CachePriority(priority))
        return target

    async def store_artifact(
        self,
        uri: str,
        file_path: Path,
        priority: CachePriority = CachePriority.NORMAL,
    ) -> CacheEntry:
        """
        Move a locally produced file (e.g. a quality variant) into the cache.

        Args:
            uri: URI the file is cached under
            file_path: Produced file (moved into the cache directory)
            priority: Eviction priority

        Returns:
            The new CacheEntry
        """
        file_path = Path(file_path)
        target = self.cache_dir / f"{cache_key(uri)}{file_path.suffix or '.mp4'}"
        try:
            await asyncio.to_thread(shutil.move, str(file_path), target)
        except OSError as e:
            raise translate_os_error(e, file_path) from e
        return await self._add_entry(uri, target, CachePriority(priority))

    async def warm_cache(
        self,
        uris: list[str],
        priority: CachePriority = CachePriority.HIGH,
    ) -> int:
        """Cache the given URIs; returns how many are now cached."""
        paths = await self.preload_videos(uris, priority)
        return len(paths)

    async def preload_videos(
        self,
        uris: list[str],
        priority: CachePriority = CachePriority.NORMAL,
    ) -> list[Path]:
        """
        Cache URIs in batches of ``cache_preload_limit``.

        Failures are logged and skipped.

        Returns:
            Paths of successfully cached files
        """
        cached: list[Path] = []
        for start in range(0, len(uris), self.preload_limit):
            batch = uris[start : start + self.preload_limit]
            results = await asyncio.gather(
                *(self.cache_video(uri, priority) for uri in batch),
                return_exceptions=True,
            )
            for uri, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.warning(f"Preload failed for {uri}: {result}")
                else:
                    cached.append(result)

        logger.info(f"Preloaded {len(cached)}/{len(uris)} videos")
        return cached

    # ═══════════════════════════════════════════════════════════════════════════
    # Eviction
    # ═══════════════════════════════════════════════════════════════════════════

    async def force_cleanup(self) -> CleanupResult:
        """
        Drop entries whose files are gone and evict down to 70% when
        the cache is above 80% of its size limit.

        Returns:
            CleanupResult with removed count and freed bytes
        """
        async with self._lock:
            initial_size = self.total_size
            initial_count = len(self._entries)

            for key, entry in list(self._entries.items()):
                if not Path(entry.local_path).exists():
                    del self._entries[key]

            if self.total_size > self.max_size * FORCED_CLEANUP_THRESHOLD:
                self._evict_to(self.max_size * EVICTION_TARGET)

            self._save_index()
            result = CleanupResult(
                removed_count=initial_count - len(self._entries),
                freed_space=initial_size - self.total_size,
            )

        logger.info(f"Cache cleanup: removed {result.removed_count}, freed {result.freed_space} bytes")
        return result

    async def reduce_cache(self, target_ratio: float) -> CleanupResult:
        """Evict until the cache holds at most ``target_ratio`` of its limit."""
        async with self._lock:
            initial_size = self.total_size
            initial_count = len(self._entries)
            self._evict_to(self.max_size * target_ratio)
            self._save_index()
            return CleanupResult(
                removed_count=initial_count - len(self._entries),
                freed_space=initial_size - self.total_size,
            )

    async def check_memory_pressure(self) -> bool:
        """
        Sample memory pressure and shrink the cache when it is too high.

        Returns:
            True if the threshold was exceeded
        """
        ratio = self.memory_probe()
        if ratio <= self.memory_threshold:
            return False

        logger.warning(f"Memory pressure {ratio:.2f} above {self.memory_threshold}, shrinking cache")
        await self.force_cleanup()
        await self.reduce_cache(PRESSURE_TARGET)
        return True

    async def clear_cache(self) -> None:
        """Delete every cached file and reset accounting."""
        async with self._lock:
            for entry in self._entries.values():
                Path(entry.local_path).unlink(missing_ok=True)
            self._entries.clear()
            self._save_index()
        logger.info("Cache cleared")

    def get_device_aware_cache_stats(self) -> CacheStats:
        """Size, count and hit rate plus the current memory pressure."""
        return CacheStats(
            size=self.total_size,
            count=len(self._entries),
            hit_rate=round(self.hit_rate, 4),
            max_size=self.max_size,
            memory_pressure=round(self.memory_probe(), 4),
        )

    def entries(self) -> list[CacheEntry]:
        """Snapshot of cache entries (copies)."""
        return [e.model_copy() for e in self._entries.values()]

    # ═══════════════════════════════════════════════════════════════════════════
    # Internals
    # ═══════════════════════════════════════════════════════════════════════════

    async def _download(self, uri: str, target: Path) -> None:
        partial = target.with_suffix(target.suffix + ".part")
        try:
            async with self.http_client.stream("GET", uri) as response:
                if response.status_code >= 400:
                    raise ProviderError(
                        f"Download failed with status {response.status_code}",
                        provider="cache",
                        status_code=response.status_code,
                        retryable=response.status_code >= 500,
                    )
                with open(partial, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
            partial.replace(target)
        except httpx.TransportError as e:
            raise NetworkError(f"Download failed for {uri}: {e}", cause=e) from e
        finally:
            partial.unlink(missing_ok=True)

    async def _add_entry(self, uri: str, path: Path, priority: CachePriority) -> CacheEntry:
        size = path.stat().st_size
        if size > self.max_size:
            path.unlink(missing_ok=True)
            raise MalformedInputError(f"{uri} ({size} bytes) does not fit in the cache ({self.max_size} bytes)")

        now = time.time()
        entry = CacheEntry(
            uri=uri,
            local_path=str(path),
            size=size,
            last_access=now,
            created_at=now,
            priority=priority,
        )

        async with self._lock:
            key = cache_key(uri)
            self._entries.pop(key, None)
            if self.total_size + size > self.max_size:
                self._evict_to(min(self.max_size * EVICTION_TARGET, self.max_size - size))
            while len(self._entries) >= self.max_entries:
                self._evict_one()
            self._entries[key] = entry
            self._save_index()

        logger.debug(f"Cached {uri} ({size} bytes, {priority.value})")
        return entry

    def _eviction_order(self) -> list[str]:
        """Keys in eviction order: low priority first, then lowest score."""
        entries = list(self._entries.items())
        if not entries:
            return []

        now = time.time()
        max_age = max((now - e.last_access for _, e in entries), default=1.0) or 1.0
        max_access = max((e.access_count for _, e in entries), default=1) or 1

        def score(entry: CacheEntry) -> float:
            recency = 1 - (now - entry.last_access) / max_age
            frequency = entry.access_count / max_access
            return frequency * 0.6 + recency * 0.4

        entries.sort(key=lambda item: (item[1].priority.rank, score(item[1])))
        return [key for key, _ in entries]

    def _evict_to(self, target_size: float) -> None:
        for key in self._eviction_order():
            if self.total_size <= target_size:
                break
            self._remove(key)

    def _evict_one(self) -> None:
        order = self._eviction_order()
        if order:
            self._remove(order[0])

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            Path(entry.local_path).unlink(missing_ok=True)
            logger.debug(f"Evicted {entry.uri} ({entry.size} bytes)")

    def _load_index(self) -> None:
        index_path = self.cache_dir / INDEX_FILE
        if not index_path.exists():
            return
        try:
            raw = json.loads(index_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache index: {e}")
            return
        if not isinstance(raw, dict):
            logger.warning(f"Ignoring cache index with unexpected layout ({type(raw).__name__})")
            return

        for key, data in raw.items():
            try:
                entry = CacheEntry.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Skipping invalid cache index entry {key}: {e.error_count()} error(s)")
                continue
            if Path(entry.local_path).exists():
                self._entries[key] = entry

    def _save_index(self) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        data = {key: entry.model_dump(mode="json") for key, entry in self._entries.items()}
        (self.cache_dir / INDEX_FILE).write_text(json.dumps(data, indent=2), encoding="utf-8")

    async def _monitor_memory(self) -> None:
        while True:
            await asyncio.sleep(self.settings.memory_poll_interval)
            try:
                await self.check_memory_pressure()
            except Exception as e:
                logger.warning(f"Memory pressure check failed: {e}")
