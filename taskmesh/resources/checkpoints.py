"""Durable task checkpoints and emergency state dumps."""
from __future__ import annotations

import asyncio
import logging
import os
import platform
import shutil
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import psutil
from pydantic import BaseModel, Field

from taskmesh.core.models import generate_id, utcnow

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = "1.0"
LATEST_DUMP_NAME = "latest_emergency_dump.json"
DEFAULT_CHECKPOINT_MAX_AGE = 7 * 24 * 60 * 60

StateProvider = Callable[[], Dict[str, Any]]


class TaskCheckpoint(BaseModel):
    task_id: str
    agent_id: str
    status: str
    progress: float = 0.0
    context: Dict[str, Any] = Field(default_factory=dict)
    intermediate_results: List[Any] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=utcnow)
    last_update: datetime = Field(default_factory=utcnow)
    model_state: Dict[str, Any] = Field(default_factory=dict)
    memory_snapshot: Dict[str, Any] = Field(default_factory=dict)
    checkpoint_id: Optional[str] = None
    saved_at: Optional[datetime] = None
    version: str = CHECKPOINT_VERSION


class CheckpointPointer(BaseModel):
    task_id: str
    checkpoint_id: str
    checkpoint_file: str
    last_update: datetime


class SystemState(BaseModel):
    active_agents: List[Dict[str, Any]] = Field(default_factory=list)
    running_tasks: List[Dict[str, Any]] = Field(default_factory=list)
    resource_metrics: Optional[Dict[str, Any]] = None
    model_load_states: Dict[str, Any] = Field(default_factory=dict)
    collaborations: Dict[str, List[str]] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class EmergencyDump(BaseModel):
    dump_id: str
    reason: str
    system_state: SystemState
    additional_data: Optional[Any] = None
    process_info: Dict[str, Any] = Field(default_factory=dict)
    environment: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


def _process_info() -> Dict[str, Any]:
    process = psutil.Process()
    memory = process.memory_info()
    return {
        "pid": process.pid,
        "uptime": time.time() - process.create_time(),
        "memory_rss": memory.rss,
        "memory_vms": memory.vms,
    }


def _environment() -> Dict[str, Any]:
    return {
        "python_version": sys.version,
        "platform": sys.platform,
        "machine": platform.machine(),
        "cwd": os.getcwd(),
    }


class CheckpointStore:
    """File-backed store under ``<root>/checkpoints`` and ``<root>/emergency-dumps``.

    Checkpoints are versioned per save; ``quick_<task>.json`` points at the
    latest one. Every dump is kept, and ``latest_emergency_dump.json`` is a
    copy of the newest.
    """

    def __init__(self, root: Path, *, state_provider: Optional[StateProvider] = None) -> None:
        self.root = Path(root)
        self.checkpoint_dir = self.root / "checkpoints"
        self.dump_dir = self.root / "emergency-dumps"
        self._state_provider = state_provider
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        self.dump_dir.mkdir(parents=True, exist_ok=True)

    def set_state_provider(self, provider: StateProvider) -> None:
        self._state_provider = provider

    # Checkpoints

    async def save_task_checkpoint(self, checkpoint: TaskCheckpoint) -> str:
        return await asyncio.to_thread(self.save_task_checkpoint_sync, checkpoint)

    def save_task_checkpoint_sync(self, checkpoint: TaskCheckpoint) -> str:
        checkpoint_id = f"checkpoint_{checkpoint.task_id}_{int(time.time() * 1000)}"
        record = checkpoint.model_copy(
            update={
                "checkpoint_id": checkpoint_id,
                "saved_at": utcnow(),
                "version": CHECKPOINT_VERSION,
            }
        )
        checkpoint_file = f"{checkpoint_id}.json"
        self._write(self.checkpoint_dir / checkpoint_file, record.model_dump_json(indent=2))

        pointer = CheckpointPointer(
            task_id=checkpoint.task_id,
            checkpoint_id=checkpoint_id,
            checkpoint_file=checkpoint_file,
            last_update=record.saved_at,
        )
        self._write(self._pointer_path(checkpoint.task_id), pointer.model_dump_json(indent=2))
        logger.info("Task checkpoint saved: %s", checkpoint_id)
        return checkpoint_id

    async def load_task_checkpoint(self, task_id: str) -> Optional[TaskCheckpoint]:
        return await asyncio.to_thread(self.load_task_checkpoint_sync, task_id)

    def load_task_checkpoint_sync(self, task_id: str) -> Optional[TaskCheckpoint]:
        pointer_path = self._pointer_path(task_id)
        if not pointer_path.exists():
            return None
        try:
            pointer = CheckpointPointer.model_validate_json(pointer_path.read_text("utf-8"))
            checkpoint_path = self.checkpoint_dir / pointer.checkpoint_file
            checkpoint = TaskCheckpoint.model_validate_json(checkpoint_path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.exception("Failed to load checkpoint for task %s", task_id)
            return None
        logger.info("Task checkpoint loaded: %s", pointer.checkpoint_id)
        return checkpoint

    def list_checkpoints(self) -> List[str]:
        return sorted(path.stem for path in self.checkpoint_dir.glob("checkpoint_*.json"))

    def cleanup_old_checkpoints(self, max_age_seconds: float = DEFAULT_CHECKPOINT_MAX_AGE) -> int:
        """Delete checkpoint files (records and pointers) older than ``max_age_seconds``."""
        now = time.time()
        cleaned = 0
        for path in self.checkpoint_dir.iterdir():
            try:
                if now - path.stat().st_mtime > max_age_seconds:
                    path.unlink()
                    cleaned += 1
            except OSError:
                logger.exception("Failed to remove old checkpoint %s", path)
        logger.info("Cleaned up %d old checkpoint files", cleaned)
        return cleaned

    def _pointer_path(self, task_id: str) -> Path:
        return self.checkpoint_dir / f"quick_{task_id}.json"

    # Emergency dumps

    async def emergency_dump(
        self,
        reason: str,
        additional_data: Optional[Any] = None,
        *,
        resource_metrics: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Snapshot state on the loop, then write it from a worker thread. Never raises."""
        dump_id = generate_id("emergency", 9)
        try:
            state = self._collect_state(resource_metrics)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to snapshot system state for dump %s", dump_id)
            await asyncio.to_thread(self._write_basic_dump, dump_id, reason, exc)
            return dump_id
        return await asyncio.to_thread(self._write_dump, dump_id, reason, additional_data, state)

    def emergency_dump_sync(
        self,
        reason: str,
        additional_data: Optional[Any] = None,
        *,
        resource_metrics: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Blocking variant for contexts without a running loop, e.g. ``sys.excepthook``."""
        dump_id = generate_id("emergency", 9)
        try:
            state = self._collect_state(resource_metrics)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to snapshot system state for dump %s", dump_id)
            self._write_basic_dump(dump_id, reason, exc)
            return dump_id
        return self._write_dump(dump_id, reason, additional_data, state)

    def _collect_state(self, resource_metrics: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        state = dict(self._state_provider() if self._state_provider else {})
        if resource_metrics is not None:
            state["resource_metrics"] = resource_metrics
        return state

    def _write_dump(
        self, dump_id: str, reason: str, additional_data: Optional[Any], state: Dict[str, Any]
    ) -> str:
        dump_path = self.dump_dir / f"{dump_id}.json"
        try:
            dump = EmergencyDump(
                dump_id=dump_id,
                reason=reason,
                system_state=SystemState(**state),
                additional_data=additional_data,
                process_info=_process_info(),
                environment=_environment(),
            )
            self._write(dump_path, dump.model_dump_json(indent=2))
            shutil.copyfile(dump_path, self.dump_dir / LATEST_DUMP_NAME)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to create emergency dump")
            self._write_basic_dump(dump_id, reason, exc)
            return dump_id

        logger.warning("Emergency dump completed: %s (%s)", dump_id, dump_path)
        return dump_id

    def _write_basic_dump(self, dump_id: str, reason: str, error: BaseException) -> None:
        basic = (
            f"Emergency Dump: {dump_id}\n"
            f"Reason: {reason}\n"
            f"Timestamp: {utcnow().isoformat()}\n"
            f"Error: {error!r}\n"
        )
        try:
            self._write(self.dump_dir / f"basic_{dump_id}.txt", basic)
        except Exception:  # noqa: BLE001
            logger.critical("Could not write fallback dump %s:\n%s", dump_id, basic)

    async def recover_from_dump(self, dump_id: Optional[str] = None) -> Optional[SystemState]:
        return await asyncio.to_thread(self.recover_from_dump_sync, dump_id)

    def recover_from_dump_sync(self, dump_id: Optional[str] = None) -> Optional[SystemState]:
        dump_path = self.dump_dir / (f"{dump_id}.json" if dump_id else LATEST_DUMP_NAME)
        if not dump_path.exists():
            return None
        try:
            dump = EmergencyDump.model_validate_json(dump_path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.exception("Failed to recover from dump %s", dump_path.name)
            return None
        logger.info("Recovered from emergency dump: %s", dump.dump_id)
        return dump.system_state

    def list_emergency_dumps(self) -> List[str]:
        return sorted(path.stem for path in self.dump_dir.glob("emergency_*.json"))

    @staticmethod
    def _write(path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, "utf-8")

