"""System resource sampling and pressure classification."""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import asdict, fields, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import psutil

from taskmesh.core.models import ResourceMetrics, ResourceThresholds
from taskmesh.resources.catalog import GIB, footprint_bytes

logger = logging.getLogger(__name__)

PressureCallback = Callable[[], Union[None, Awaitable[None]]]
DumpHook = Callable[[str, Dict[str, Any]], Awaitable[Any]]

DEFAULT_TOTAL_VRAM = 28 * GIB
CPU_SAMPLE_SECONDS = 0.1


class PressureLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class ResourceMonitor:
    """Samples RAM/CPU, estimates VRAM and notifies registered observers.

    Critical RAM dumps state and runs the emergency callbacks, warning RAM runs
    the pause callbacks, and the first normal sample after either runs the
    resume callbacks. Callback failures are logged, never raised.
    """

    def __init__(
        self,
        *,
        thresholds: Optional[ResourceThresholds] = None,
        total_vram: int = DEFAULT_TOTAL_VRAM,
        dump: Optional[DumpHook] = None,
    ) -> None:
        self._thresholds = thresholds or ResourceThresholds()
        self._total_vram = total_vram
        self._dump = dump
        self._loaded_models: Set[str] = set()
        self._emergency_callbacks: List[PressureCallback] = []
        self._pause_callbacks: List[PressureCallback] = []
        self._resume_callbacks: List[PressureCallback] = []
        self._under_pressure = False
        self.last_metrics: Optional[ResourceMetrics] = None
        self._check_lock = asyncio.Lock()
        self._runner: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    def set_dump_hook(self, dump: DumpHook) -> None:
        self._dump = dump

    @property
    def is_monitoring(self) -> bool:
        return self._runner is not None

    @property
    def under_pressure(self) -> bool:
        return self._under_pressure

    # Model bookkeeping feeding the VRAM estimate

    def mark_model_loaded(self, model_name: str) -> None:
        self._loaded_models.add(model_name)

    def mark_model_unloaded(self, model_name: str) -> None:
        self._loaded_models.discard(model_name)

    def loaded_models(self) -> Dict[str, int]:
        return {name: footprint_bytes(name) for name in sorted(self._loaded_models)}

    def estimate_vram_usage(self) -> int:
        return min(sum(self.loaded_models().values()), self._total_vram)

    # Metrics

    async def get_resource_metrics(self) -> ResourceMetrics:
        memory = psutil.virtual_memory()
        cpu_usage = await asyncio.to_thread(psutil.cpu_percent, CPU_SAMPLE_SECONDS)
        used_vram = self.estimate_vram_usage()
        used_ram = memory.total - memory.available

        return ResourceMetrics(
            total_ram=memory.total,
            used_ram=used_ram,
            free_ram=memory.available,
            ram_utilization=used_ram / memory.total * 100 if memory.total else 0.0,
            total_vram=self._total_vram,
            used_vram=used_vram,
            free_vram=self._total_vram - used_vram,
            vram_utilization=used_vram / self._total_vram * 100 if self._total_vram else 0.0,
            cpu_usage=min(float(cpu_usage), 100.0),
        )

    def classify(self, metrics: ResourceMetrics) -> PressureLevel:
        if metrics.ram_utilization >= self._thresholds.ram_critical:
            return PressureLevel.CRITICAL
        if metrics.ram_utilization >= self._thresholds.ram_warning:
            return PressureLevel.WARNING
        return PressureLevel.NORMAL

    async def check_resource_pressure(
        self, metrics: Optional[ResourceMetrics] = None
    ) -> PressureLevel:
        async with self._check_lock:
            if metrics is None:
                metrics = await self.get_resource_metrics()
            self.last_metrics = metrics

            level = self.classify(metrics)
            if level is PressureLevel.CRITICAL:
                logger.error("CRITICAL: RAM usage at %.1f%%", metrics.ram_utilization)
                await self._handle_critical_ram(metrics)
            elif level is PressureLevel.WARNING:
                logger.warning("WARNING: RAM usage at %.1f%%", metrics.ram_utilization)
                self._under_pressure = True
                await self._run_callbacks("pause", self._pause_callbacks)
            elif self._under_pressure:
                logger.info("RAM usage back to %.1f%%, resuming", metrics.ram_utilization)
                self._under_pressure = False
                await self._run_callbacks("resume", self._resume_callbacks)

            if metrics.vram_utilization >= self._thresholds.vram_critical:
                logger.error("CRITICAL: VRAM usage at %.1f%%", metrics.vram_utilization)
                self.on_vram_critical(metrics)
            elif metrics.vram_utilization >= self._thresholds.vram_warning:
                logger.warning("WARNING: VRAM usage at %.1f%%", metrics.vram_utilization)
                self.on_vram_warning(metrics)
            return level

    async def _handle_critical_ram(self, metrics: ResourceMetrics) -> None:
        self._under_pressure = True
        if self._dump is not None:
            try:
                await self._dump("critical-ram-usage", {"metrics": asdict(metrics)})
            except Exception:  # noqa: BLE001
                logger.exception("Emergency dump failed")
        await self._run_callbacks("emergency", self._emergency_callbacks)

    def on_vram_critical(self, metrics: ResourceMetrics) -> None:
        """Hook for unloading models; the execution layer owns that policy."""
        logger.info("Unloading non-essential models to free VRAM...")

    def on_vram_warning(self, metrics: ResourceMetrics) -> None:
        """Hook for deferring model-heavy work; the execution layer owns that policy."""
        logger.info("Queueing new tasks due to high VRAM usage...")

    async def _run_callbacks(self, kind: str, callbacks: List[PressureCallback]) -> None:
        for callback in list(callbacks):
            try:
                outcome = callback()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:  # noqa: BLE001
                logger.exception("%s callback failed", kind.capitalize())

    # Observer registration

    def on_emergency(self, callback: PressureCallback) -> None:
        self._emergency_callbacks.append(callback)

    def on_pause(self, callback: PressureCallback) -> None:
        self._pause_callbacks.append(callback)

    def on_resume(self, callback: PressureCallback) -> None:
        self._resume_callbacks.append(callback)

    # Thresholds

    def set_thresholds(self, **thresholds: float) -> None:
        known = {field.name for field in fields(ResourceThresholds)}
        unknown = set(thresholds) - known
        if unknown:
            raise ValueError(f"Unknown thresholds: {', '.join(sorted(unknown))}")
        self._thresholds = replace(self._thresholds, **thresholds)
        logger.info("Resource thresholds updated: %s", asdict(self._thresholds))

    def get_thresholds(self) -> Dict[str, float]:
        return asdict(self._thresholds)

    # Sampling loop

    def start_monitoring(self, interval_ms: int = 5000) -> None:
        if self._runner is not None:
            return
        self._stop_event.clear()
        self._runner = asyncio.create_task(self._run(interval_ms / 1000))
        logger.info("Resource monitoring started (interval: %sms)", interval_ms)

    async def stop_monitoring(self) -> None:
        if self._runner is None:
            return
        self._stop_event.set()
        await self._runner
        self._runner = None
        logger.info("Resource monitoring stopped")

    async def _run(self, interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                await self.check_resource_pressure()
            except Exception:  # noqa: BLE001
                logger.exception("Resource check failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
