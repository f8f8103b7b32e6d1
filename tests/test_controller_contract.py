from __future__ import annotations

import io
from pathlib import Path

import allure
import pytest

from durable_task import controller as controller_module
from durable_task.controller import Controller, controller_from_state, register_controller_kind
from durable_task.errors import ControllerContractError, ControllerIOError
from durable_task.launcher import Launcher

pytestmark = [
    allure.epic("Task Control Protocol"),
    allure.feature("Legacy Compatibility"),
]


class _Minimal(Controller):
    def write_log(self, workspace, sink):
        return False

    def cleanup(self, workspace):
        return None


class LegacyController(_Minimal):
    """Written before exit_status and stop took a launcher."""

    def __init__(self) -> None:
        self.stopped: list[Path] = []

    def legacy_exit_status(self, workspace):
        return 7

    def legacy_stop(self, workspace):
        self.stopped.append(workspace)


class CurrentController(_Minimal):
    def __init__(self) -> None:
        self.launchers: list[Launcher] = []

    def exit_status(self, workspace, launcher):
        self.launchers.append(launcher)
        return 0

    def stop(self, workspace, launcher):
        self.launchers.append(launcher)


class VerboseLegacyController(_Minimal):
    def legacy_exit_status(self, workspace, verbose=False):
        return 5 if verbose else 6


class IncompleteController(_Minimal):
    pass


def test_current_caller_reaches_legacy_exit_status(tmp_path: Path) -> None:
    assert LegacyController().exit_status(tmp_path, Launcher()) == 7


def test_legacy_override_with_defaulted_extra_parameter(tmp_path: Path) -> None:
    assert VerboseLegacyController().exit_status(tmp_path, Launcher()) == 6


def test_current_caller_reaches_legacy_stop(tmp_path: Path) -> None:
    controller = LegacyController()

    controller.stop(tmp_path, Launcher())

    assert controller.stopped == [tmp_path]


def test_legacy_caller_gets_a_synthesized_launcher(tmp_path: Path, monkeypatch) -> None:
    created: list[Path] = []
    synthesized = Launcher()

    def _fake_create_launcher(workspace: Path) -> Launcher:
        created.append(workspace)
        return synthesized

    monkeypatch.setattr(controller_module, "create_launcher", _fake_create_launcher)
    controller = CurrentController()

    assert controller.legacy_exit_status(tmp_path) == 0
    controller.legacy_stop(tmp_path)

    assert created == [tmp_path, tmp_path]
    assert controller.launchers == [synthesized, synthesized]


@pytest.mark.parametrize("operation", ["exit_status", "stop"])
def test_implementing_neither_form_is_a_contract_violation(tmp_path: Path, operation: str) -> None:
    controller = IncompleteController()

    with pytest.raises(ControllerContractError, match=f"must implement {operation}"):
        getattr(controller, operation)(tmp_path, Launcher())


def test_legacy_entry_point_on_incomplete_controller_is_a_contract_violation(
    tmp_path: Path,
) -> None:
    with pytest.raises(ControllerContractError):
        IncompleteController().legacy_exit_status(tmp_path)


def test_default_get_output_is_an_io_failure(tmp_path: Path) -> None:
    with pytest.raises(ControllerIOError, match="Did not implement get_output"):
        CurrentController().get_output(tmp_path, Launcher())


def test_default_diagnostics_is_the_controller_identity(tmp_path: Path) -> None:
    controller = CurrentController()

    assert controller.get_diagnostics(tmp_path, Launcher()) == str(controller)


def test_controller_without_state_support_refuses_serialization() -> None:
    with pytest.raises(TypeError, match="does not support state documents"):
        CurrentController().to_state()


def test_write_log_is_abstract() -> None:
    class NoLog(Controller):
        def cleanup(self, workspace):
            return None

    with pytest.raises(TypeError):
        NoLog()


def test_registry_restores_registered_kind() -> None:
    @register_controller_kind("test_fixed")
    class FixedController(_Minimal):
        def __init__(self, value: int) -> None:
            self.value = value

        def to_state(self):
            return {"kind": self.kind, "value": self.value}

        @classmethod
        def from_state(cls, state):
            return cls(state["value"])

    restored = controller_from_state(FixedController(5).to_state())

    assert isinstance(restored, FixedController)
    assert restored.value == 5
    assert restored.write_log(Path("."), io.BytesIO()) is False


def test_registry_rejects_duplicate_kind() -> None:
    @register_controller_kind("test_duplicate")
    class First(_Minimal):
        pass

    with pytest.raises(ValueError, match="already registered"):

        @register_controller_kind("test_duplicate")
        class Second(_Minimal):
            pass


@pytest.mark.parametrize(
    ("state", "message"),
    [
        ({}, "non-empty string 'kind'"),
        ({"kind": ""}, "non-empty string 'kind'"),
        ({"kind": "no_such_kind"}, "Unknown controller kind"),
    ],
)
def test_registry_rejects_bad_documents(state: dict, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        controller_from_state(state)
