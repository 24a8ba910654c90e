"""Remembered camera choices per role."""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence

from effort_logger.core.logging_utils import LoggerLike, ensure_structured_logger
from effort_logger.core.state_store import JsonStateStore

from .camera_models import CameraDevice, CameraRole

SELECTION_NAMESPACE = "camera_selection"

Selection = Dict[CameraRole, Optional[str]]


def resolve_selection(
    devices: Sequence[CameraDevice],
    saved: Optional[Mapping[CameraRole | str, Optional[str]]] = None,
) -> Selection:
    """Pick a device id per role.

    A saved id wins when that device is still present. Otherwise ``face``
    takes the first device and ``field`` the second; with a single camera
    ``field`` stays unassigned. The two roles never resolve to the same
    device.
    """
    available = [device.id for device in devices]
    saved_by_role: Dict[CameraRole, Optional[str]] = {}
    for key, value in (saved or {}).items():
        try:
            saved_by_role[CameraRole.parse(key)] = value
        except ValueError:
            continue

    selection: Selection = {}
    for role in CameraRole:
        candidate = saved_by_role.get(role)
        selection[role] = candidate if candidate in available else None

    if selection[CameraRole.FIELD] is not None and selection[CameraRole.FIELD] == selection[CameraRole.FACE]:
        selection[CameraRole.FIELD] = None

    if selection[CameraRole.FACE] is None and available:
        taken = selection[CameraRole.FIELD]
        selection[CameraRole.FACE] = next((d for d in available if d != taken), None)

    if selection[CameraRole.FIELD] is None:
        face = selection[CameraRole.FACE]
        remaining = [d for d in available if d != face]
        if len(available) > 1 and remaining:
            selection[CameraRole.FIELD] = remaining[0]

    return selection


class CameraSelectionStore:
    """Stores the selected device id for each role in the user state file."""

    def __init__(self, store: JsonStateStore, *, logger: LoggerLike = None) -> None:
        self._store = store
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

    async def load(self) -> Selection:
        raw = await self._store.get_namespace(SELECTION_NAMESPACE)
        selection: Selection = {}
        for role in CameraRole:
            value = raw.get(role.value)
            selection[role] = str(value) if value else None
        return selection

    async def save(self, selection: Mapping[CameraRole, Optional[str]]) -> None:
        payload = {CameraRole.parse(role).value: device_id for role, device_id in selection.items()}
        if await self._store.set_namespace(SELECTION_NAMESPACE, payload):
            self._logger.debug("Saved camera selection %s", payload)


__all__ = ["CameraSelectionStore", "SELECTION_NAMESPACE", "Selection", "resolve_selection"]
