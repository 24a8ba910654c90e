"""Camera preparation before a session: enumerate, pick, bind with retry."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from effort_logger.core.errors import DeviceUnavailable
from effort_logger.core.logging_utils import LoggerLike, ensure_structured_logger
from effort_logger.modules.Cameras.camera_models import CameraDevice, CameraRole, FrameSource
from effort_logger.modules.Cameras.registry import CameraRegistry
from effort_logger.modules.Cameras.selection import CameraSelectionStore, resolve_selection

from .config import ExperimentConfig


@dataclass(frozen=True, slots=True)
class CameraSetupResult:
    devices: Tuple[CameraDevice, ...]
    face_device: Optional[str]
    field_device: Optional[str]
    degraded: bool
    field_error: Optional[str] = None


class CameraSetupManager:
    """Binds ``face`` (required) and ``field`` (optional) for a session.

    A ``field`` camera that is missing or keeps failing downgrades the session
    to single-camera capture; a ``face`` failure is raised to the caller.
    """

    def __init__(
        self,
        registry: CameraRegistry,
        config: ExperimentConfig,
        *,
        selection_store: Optional[CameraSelectionStore] = None,
        logger: LoggerLike = None,
    ) -> None:
        self._registry = registry
        self._config = config
        self._selection_store = selection_store
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

    async def bind_with_retry(self, role: CameraRole, device_id: Optional[str]) -> FrameSource:
        attempts = self._config.bind_attempts
        last_error: Optional[DeviceUnavailable] = None
        for attempt in range(1, attempts + 1):
            try:
                return await self._registry.bind(role, device_id)
            except DeviceUnavailable as exc:
                last_error = exc
                self._logger.warning(
                    "Binding %s camera failed (attempt %d/%d): %s", role.value, attempt, attempts, exc.reason,
                )
                if attempt < attempts:
                    await asyncio.sleep(self._config.bind_retry_delay_s)
        assert last_error is not None
        raise last_error

    async def prepare(
        self,
        *,
        face_device: Optional[str] = None,
        field_device: Optional[str] = None,
    ) -> CameraSetupResult:
        devices = await self._registry.enumerate()
        if not devices and not face_device:
            raise DeviceUnavailable(CameraRole.FACE.value, None, "no cameras found")

        saved: Dict[CameraRole, Optional[str]] = {}
        if self._selection_store is not None:
            saved = await self._selection_store.load()
        selection = resolve_selection(devices, saved)
        if face_device:
            selection[CameraRole.FACE] = face_device
        if field_device:
            selection[CameraRole.FIELD] = field_device
        elif selection[CameraRole.FIELD] == selection[CameraRole.FACE]:
            others = [d.id for d in devices if d.id != selection[CameraRole.FACE]]
            selection[CameraRole.FIELD] = others[0] if others else None

        face_id = selection[CameraRole.FACE]
        await self.bind_with_retry(CameraRole.FACE, face_id)

        field_id = selection[CameraRole.FIELD]
        field_error: Optional[str] = None
        if field_id is None:
            field_error = "no second camera available"
        else:
            try:
                await self.bind_with_retry(CameraRole.FIELD, field_id)
            except DeviceUnavailable as exc:
                field_error = exc.reason or str(exc)

        degraded = field_error is not None
        if degraded:
            self._logger.warning("Field camera unavailable (%s); continuing with face camera only", field_error)

        if self._selection_store is not None:
            await self._selection_store.save(selection)

        return CameraSetupResult(
            devices=tuple(devices),
            face_device=face_id,
            field_device=None if degraded else field_id,
            degraded=degraded,
            field_error=field_error,
        )


__all__ = ["CameraSetupManager", "CameraSetupResult"]
