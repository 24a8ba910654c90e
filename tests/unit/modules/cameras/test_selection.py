"""Unit tests for camera selection defaults and persistence."""

import pytest

from effort_logger.modules.Cameras.camera_models import CameraDevice, CameraRole
from effort_logger.modules.Cameras.selection import CameraSelectionStore, resolve_selection

FACE, FIELD = CameraRole.FACE, CameraRole.FIELD
DEVICES = [CameraDevice("cam-a", "A"), CameraDevice("cam-b", "B"), CameraDevice("cam-c", "C")]


class TestResolveSelection:

    def test_defaults_first_and_second(self):
        assert resolve_selection(DEVICES) == {FACE: "cam-a", FIELD: "cam-b"}

    def test_single_camera_leaves_field_empty(self):
        assert resolve_selection(DEVICES[:1]) == {FACE: "cam-a", FIELD: None}

    def test_no_cameras(self):
        assert resolve_selection([]) == {FACE: None, FIELD: None}

    def test_saved_choices_win_when_present(self):
        saved = {"face": "cam-c", "field": "cam-a"}
        assert resolve_selection(DEVICES, saved) == {FACE: "cam-c", FIELD: "cam-a"}

    def test_missing_saved_device_falls_back(self):
        saved = {FACE: "unplugged", FIELD: "cam-a"}
        assert resolve_selection(DEVICES, saved) == {FACE: "cam-b", FIELD: "cam-a"}

    def test_roles_never_share_a_device(self):
        saved = {FACE: "cam-b", FIELD: "cam-b"}
        assert resolve_selection(DEVICES, saved) == {FACE: "cam-b", FIELD: "cam-a"}

    def test_unknown_role_keys_ignored(self):
        assert resolve_selection(DEVICES, {"side": "cam-c"}) == {FACE: "cam-a", FIELD: "cam-b"}


class TestCameraSelectionStore:

    @pytest.mark.asyncio
    async def test_round_trip(self, state_store):
        store = CameraSelectionStore(state_store)

        await store.save({FACE: "cam-a", FIELD: None})

        assert await store.load() == {FACE: "cam-a", FIELD: None}
        assert await state_store.get_namespace("camera_selection") == {"face": "cam-a", "field": None}

    @pytest.mark.asyncio
    async def test_empty_store(self, state_store):
        assert await CameraSelectionStore(state_store).load() == {FACE: None, FIELD: None}
