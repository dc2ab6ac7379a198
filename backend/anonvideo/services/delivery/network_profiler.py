"""
Network condition profiling.

Measures bandwidth and latency against a small set of test URLs,
tracks stability over recent samples and classifies the connection into
four quality levels. Measurements repeat on a cooperative timer whose
interval adapts to stability, and immediately on connectivity changes.
"""

import asyncio
import logging
import statistics
import time
from collections import deque
from typing import Awaitable, Callable

import httpx

from anonvideo.config import Settings
from anonvideo.models.delivery import NetworkProfile, NetworkQuality

logger = logging.getLogger(__name__)

# Signature: (new_profile, previous_profile) -> None
QualityListener = Callable[[NetworkProfile, NetworkProfile | None], Awaitable[None]]

DEFAULT_LATENCY_MS = 100.0
HISTORY_SIZE = 10
MIN_INTERVAL = 10.0
MAX_INTERVAL = 60.0


def calculate_stability(samples: list[float]) -> float:
    """1 - coefficient of variation of the samples, clamped to 0-1."""
    if len(samples) < 2:
        return 1.0
    mean = statistics.fmean(samples)
    if mean <= 0:
        return 0.0
    cv = statistics.pstdev(samples) / mean
    return max(0.0, min(1.0, 1 - cv))


def classify_network(bandwidth_mbps: float, latency_ms: float, stability: float) -> NetworkQuality:
    """
    Four-level classification from a weighted score.

    score = min(1, bw/20) * 0.4 + max(0, 1 - latency/200) * 0.3 + stability * 0.3
    """
    score = (
        min(1.0, max(0.0, bandwidth_mbps) / 20) * 0.4
        + max(0.0, 1 - latency_ms / 200) * 0.3
        + stability * 0.3
    )
    if score >= 0.8:
        return NetworkQuality.EXCELLENT
    if score >= 0.6:
        return NetworkQuality.GOOD
    if score >= 0.4:
        return NetworkQuality.FAIR
    return NetworkQuality.POOR


class NetworkProfiler:
    """
    Bandwidth/latency profiler with quality transition notifications.

    Example:
        profiler = NetworkProfiler(settings, connection_estimates)
        profiler.add_listener(on_quality_change)
        await profiler.start()
        profile = await profiler.measure_network_condition()
        await profiler.stop()
    """

    def __init__(
        self,
        settings: Settings,
        connection_estimates: dict[str, float] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize network profiler.

        Args:
            settings: Application settings (test URLs, intervals)
            connection_estimates: Mbps per connection type for fallback
            http_client: Optional preconfigured client (tests)
        """
        self.settings = settings
        self.test_urls = list(settings.network_test_urls)
        self.connection_estimates = connection_estimates or {"unknown": 2.0}
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.network_request_timeout,
            follow_redirects=True,
        )
        self.connection_type = "unknown"
        self.is_connected = True
        self.interval = settings.network_measure_interval

        self._current: NetworkProfile | None = None
        self._samples: deque[float] = deque(maxlen=HISTORY_SIZE)
        self._listeners: list[QualityListener] = []
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def current_profile(self) -> NetworkProfile | None:
        """Last measured profile (None before the first measurement)."""
        return self._current

    def add_listener(self, listener: QualityListener) -> None:
        """Notify ``listener`` whenever the quality level changes."""
        self._listeners.append(listener)

    def remove_listener(self, listener: QualityListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    async def measure_bandwidth(self) -> float | None:
        """Median download throughput over the test URLs (None if all fail)."""
        results = []
        for url in self.test_urls:
            try:
                started = time.perf_counter()
                response = await self.http_client.get(url)
                elapsed = max(time.perf_counter() - started, 1e-3)
                response.raise_for_status()
                results.append(len(response.content) * 8 / elapsed / 1_000_000)
            except httpx.HTTPError as e:
                logger.debug(f"Bandwidth probe failed for {url}: {e}")

        return statistics.median(results) if results else None

    async def measure_latency(self) -> float:
        """Fastest HEAD round trip in ms (default when every probe fails)."""
        results = []
        for url in self.test_urls:
            try:
                started = time.perf_counter()
                await self.http_client.head(url)
                results.append((time.perf_counter() - started) * 1000)
            except httpx.HTTPError as e:
                logger.debug(f"Latency probe failed for {url}: {e}")

        return min(results) if results else DEFAULT_LATENCY_MS

    def estimate_bandwidth(self) -> float:
        """Bandwidth assumed for the current connection type."""
        estimates = self.connection_estimates
        return float(estimates.get(self.connection_type, estimates.get("unknown", 2.0)))

    async def measure_network_condition(self) -> NetworkProfile:
        """
        Measure, classify and publish the current network profile.

        Returns:
            NetworkProfile (poor / 0 Mbps when disconnected)
        """
        async with self._lock:
            if not self.is_connected:
                profile = NetworkProfile(
                    quality=NetworkQuality.POOR,
                    bandwidth_mbps=0.0,
                    latency_ms=0.0,
                    stability=0.0,
                    connection_type=self.connection_type,
                    is_connected=False,
                )
            else:
                bandwidth = await self.measure_bandwidth()
                if bandwidth is None:
                    bandwidth = self.estimate_bandwidth()
                    logger.debug(f"Using {self.connection_type} estimate: {bandwidth} Mbps")
                latency = await self.measure_latency()

                self._samples.append(bandwidth)
                stability = calculate_stability(list(self._samples))
                profile = NetworkProfile(
                    quality=classify_network(bandwidth, latency, stability),
                    bandwidth_mbps=round(bandwidth, 3),
                    latency_ms=round(latency, 1),
                    stability=round(stability, 3),
                    connection_type=self.connection_type,
                    is_connected=True,
                )

            previous = self._current
            self._current = profile
            self._adjust_interval(profile)

        if previous is None or previous.quality != profile.quality:
            logger.info(
                f"Network quality: {profile.quality.value} "
                f"({profile.bandwidth_mbps} Mbps, {profile.latency_ms} ms)"
            )
            await self._notify(profile, previous)

        return profile

    async def on_connectivity_change(
        self,
        connection_type: str,
        is_connected: bool = True,
    ) -> NetworkProfile:
        """Record a connectivity transition and remeasure immediately."""
        logger.info(f"Connectivity change: {connection_type} (connected={is_connected})")
        self.connection_type = connection_type
        self.is_connected = is_connected
        if not is_connected:
            self._samples.clear()
        return await self.measure_network_condition()

    async def start(self) -> None:
        """Start the periodic measurement task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="network-profiler")

    async def stop(self) -> None:
        """Cancel the measurement task."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def close(self) -> None:
        await self.stop()
        await self.http_client.aclose()

    async def _run(self) -> None:
        while True:
            try:
                await self.measure_network_condition()
            except Exception as e:
                logger.warning(f"Network measurement failed: {e}")
            await asyncio.sleep(self.interval)

    def _adjust_interval(self, profile: NetworkProfile) -> None:
        """Measure more often on unstable networks, less often on stable ones."""
        if profile.stability < 0.5:
            self.interval = max(MIN_INTERVAL, self.interval / 2)
        elif profile.stability > 0.8:
            self.interval = min(MAX_INTERVAL, self.interval * 1.5)

    async def _notify(self, profile: NetworkProfile, previous: NetworkProfile | None) -> None:
        for listener in list(self._listeners):
            try:
                await listener(profile, previous)
            except Exception as e:
                logger.warning(f"Network listener error: {e}")
