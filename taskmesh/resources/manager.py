"""Facade bundling resource monitoring, checkpoints and crash recovery."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from taskmesh.core.models import ResourceMetrics, ResourceThresholds
from taskmesh.resources.checkpoints import (
    CheckpointStore,
    StateProvider,
    SystemState,
    TaskCheckpoint,
)
from taskmesh.resources.crash import CrashGuard, ShutdownHook
from taskmesh.resources.monitor import (
    DEFAULT_TOTAL_VRAM,
    PressureCallback,
    PressureLevel,
    ResourceMonitor,
)

logger = logging.getLogger(__name__)


class ResourceManager:
    """Single entry point for the resource API used by the orchestrator and transport."""

    def __init__(
        self,
        state_dir: Path,
        *,
        thresholds: Optional[ResourceThresholds] = None,
        total_vram: int = DEFAULT_TOTAL_VRAM,
        monitor: Optional[ResourceMonitor] = None,
        store: Optional[CheckpointStore] = None,
    ) -> None:
        self.store = store or CheckpointStore(state_dir)
        self.monitor = monitor or ResourceMonitor(thresholds=thresholds, total_vram=total_vram)
        self.monitor.set_dump_hook(self._dump_from_monitor)
        self._crash_guard: Optional[CrashGuard] = None

    def attach_state_provider(self, provider: StateProvider) -> None:
        """Let dumps include the orchestrator's agents, tasks and collaborations."""

        def provide() -> Dict[str, Any]:
            state = dict(provider())
            state.setdefault("model_load_states", self.monitor.loaded_models())
            return state

        self.store.set_state_provider(provide)

    # Monitoring

    async def get_resource_metrics(self) -> ResourceMetrics:
        return await self.monitor.get_resource_metrics()

    def start_monitoring(self, interval_ms: int = 5000) -> None:
        self.monitor.start_monitoring(interval_ms)

    async def stop_monitoring(self) -> None:
        await self.monitor.stop_monitoring()

    async def check_resource_pressure(
        self, metrics: Optional[ResourceMetrics] = None
    ) -> PressureLevel:
        return await self.monitor.check_resource_pressure(metrics)

    def on_emergency(self, callback: PressureCallback) -> None:
        self.monitor.on_emergency(callback)

    def on_pause(self, callback: PressureCallback) -> None:
        self.monitor.on_pause(callback)

    def on_resume(self, callback: PressureCallback) -> None:
        self.monitor.on_resume(callback)

    def set_thresholds(self, **thresholds: float) -> None:
        self.monitor.set_thresholds(**thresholds)

    def get_thresholds(self) -> Dict[str, float]:
        return self.monitor.get_thresholds()

    # Checkpoints and dumps

    async def save_task_checkpoint(self, checkpoint: TaskCheckpoint) -> str:
        return await self.store.save_task_checkpoint(checkpoint)

    async def load_task_checkpoint(self, task_id: str) -> Optional[TaskCheckpoint]:
        return await self.store.load_task_checkpoint(task_id)

    async def emergency_dump(self, reason: str, additional_data: Optional[Any] = None) -> str:
        try:
            metrics: Optional[Dict[str, Any]] = asdict(await self.get_resource_metrics())
        except Exception:  # noqa: BLE001
            logger.exception("Could not sample resources for emergency dump")
            metrics = None
        return await self.store.emergency_dump(reason, additional_data, resource_metrics=metrics)

    async def _dump_from_monitor(self, reason: str, additional_data: Dict[str, Any]) -> str:
        return await self.store.emergency_dump(
            reason, additional_data, resource_metrics=additional_data.get("metrics")
        )

    async def recover_from_dump(self, dump_id: Optional[str] = None) -> Optional[SystemState]:
        return await self.store.recover_from_dump(dump_id)

    def list_checkpoints(self) -> List[str]:
        return self.store.list_checkpoints()

    def list_emergency_dumps(self) -> List[str]:
        return self.store.list_emergency_dumps()

    async def cleanup_old_checkpoints(self, max_age_seconds: Optional[float] = None) -> int:
        if max_age_seconds is None:
            return await asyncio.to_thread(self.store.cleanup_old_checkpoints)
        return await asyncio.to_thread(self.store.cleanup_old_checkpoints, max_age_seconds)

    # Crash handling

    def install_crash_handlers(
        self, *, handle_signals: bool = True, shutdown: Optional[ShutdownHook] = None
    ) -> CrashGuard:
        if self._crash_guard is None:
            self._crash_guard = CrashGuard(self.store, shutdown=shutdown)
            self._crash_guard.install(handle_signals=handle_signals)
        return self._crash_guard

    def uninstall_crash_handlers(self) -> None:
        if self._crash_guard is not None:
            self._crash_guard.uninstall()
            self._crash_guard = None
