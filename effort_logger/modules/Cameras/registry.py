"""Camera source registry: one owned stream per role, many read-only views."""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional

from effort_logger.core.errors import DeviceUnavailable, PermissionDenied
from effort_logger.core.logging_utils import LoggerLike, ensure_structured_logger

from .backends.base import CameraBackend
from .camera_models import CameraBinding, CameraDevice, CameraRole, FrameSource

BindingListener = Callable[[CameraRole, Optional[FrameSource]], None]


class CameraRegistry:
    """Owns device enumeration and the ``face``/``field`` bindings.

    Only the registry acquires or releases streams. Rebinding a role always
    tears down the previous stream before the new one is requested, and
    rebinds of the same role are serialized.
    """

    def __init__(self, backend: CameraBackend, *, logger: LoggerLike = None) -> None:
        self._backend = backend
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)
        self._devices: List[CameraDevice] = []
        self._bindings: Dict[CameraRole, CameraBinding] = {}
        self._locks: Dict[CameraRole, asyncio.Lock] = {role: asyncio.Lock() for role in CameraRole}
        self._listeners: Dict[CameraRole, List[BindingListener]] = {role: [] for role in CameraRole}

    @property
    def backend(self) -> CameraBackend:
        return self._backend

    @property
    def devices(self) -> List[CameraDevice]:
        return list(self._devices)

    # ------------------------------------------------------------------
    # Enumeration

    async def enumerate(self) -> List[CameraDevice]:
        """Request access with a temporary stream, list devices, drop the grant."""
        grant: Optional[FrameSource] = None
        try:
            try:
                grant = await self._backend.acquire_stream(None)
            except PermissionError:
                raise
            except Exception as exc:
                self._logger.debug("No access grant stream (%s); listing devices anyway", exc)
            devices = await self._backend.list_devices()
        except PermissionError as exc:
            self._logger.error("Camera permission denied: %s", exc)
            raise PermissionDenied(str(exc) or "Camera access denied") from exc
        finally:
            if grant is not None:
                await self._backend.release(grant)

        self._devices = list(devices)
        self._logger.info(
            "Enumerated %d camera(s): %s",
            len(self._devices),
            ", ".join(device.display_label(i) for i, device in enumerate(self._devices)) or "none",
        )
        return self.devices

    # ------------------------------------------------------------------
    # Bindings

    async def bind(self, role: CameraRole | str, device_id: Optional[str]) -> FrameSource:
        role = CameraRole.parse(role)
        device_id = device_id or None
        async with self._locks[role]:
            await self._release_role(role)
            try:
                stream = await self._backend.acquire_stream(device_id)
            except PermissionError as exc:
                self._notify(role, None)
                raise PermissionDenied(str(exc) or "Camera access denied") from exc
            except Exception as exc:
                self._logger.warning("Failed to bind %s to %s: %s", role.value, device_id or "default", exc)
                self._notify(role, None)
                raise DeviceUnavailable(role.value, device_id, str(exc)) from exc

            self._bindings[role] = CameraBinding(role=role, device_id=device_id, stream=stream)
            self._logger.info("Bound %s camera to %s", role.value, device_id or "default device")
            self._notify(role, stream)
            return stream

    async def unbind(self, role: CameraRole | str) -> None:
        role = CameraRole.parse(role)
        async with self._locks[role]:
            if await self._release_role(role):
                self._logger.info("Unbound %s camera", role.value)
                self._notify(role, None)

    async def unbind_all(self) -> None:
        for role in CameraRole:
            await self.unbind(role)

    async def _release_role(self, role: CameraRole) -> bool:
        binding = self._bindings.pop(role, None)
        if binding is None:
            return False
        try:
            await self._backend.release(binding.stream)
        except Exception:
            self._logger.warning("Error releasing %s stream %s", role.value, binding.device_id, exc_info=True)
        return True

    def binding(self, role: CameraRole | str) -> Optional[CameraBinding]:
        return self._bindings.get(CameraRole.parse(role))

    def stream_for(self, role: CameraRole | str) -> Optional[FrameSource]:
        binding = self.binding(role)
        return binding.stream if binding else None

    def is_bound(self, role: CameraRole | str) -> bool:
        return self.binding(role) is not None

    # ------------------------------------------------------------------
    # Views

    def subscribe(self, role: CameraRole | str, listener: BindingListener) -> Callable[[], None]:
        role = CameraRole.parse(role)
        self._listeners[role].append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners[role].remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def _notify(self, role: CameraRole, stream: Optional[FrameSource]) -> None:
        for listener in list(self._listeners[role]):
            try:
                listener(role, stream)
            except Exception:
                self._logger.exception("Camera view listener failed for %s", role.value)


__all__ = ["BindingListener", "CameraRegistry"]
