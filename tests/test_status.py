"""Tests for missionfactory.services.status."""

from types import SimpleNamespace

from db.enums import MissionStatus
from missionfactory.services.status import cooldown_for, cooldown_remaining, derive_status


def _data(**overrides: object) -> SimpleNamespace:
    base: dict[str, object] = {
        "enrollment_start": 100,
        "enrollment_end": 200,
        "mission_start": 300,
        "mission_end": 1300,
        "mission_rounds": 3,
        "min_players": 2,
        "players_count": 2,
        "round_count": 0,
        "round_pause_duration": 300,
        "last_round_pause_duration": 60,
        "pause_timestamp": None,
        "terminal_status": None,
    }
    base.update(overrides)
    return SimpleNamespace(**base)


class TestDeriveStatus:
    def test_pending_before_enrollment(self) -> None:
        assert derive_status(99, _data()) == MissionStatus.PENDING

    def test_enrolling_window_is_inclusive(self) -> None:
        assert derive_status(100, _data()) == MissionStatus.ENROLLING
        assert derive_status(200, _data()) == MissionStatus.ENROLLING

    def test_arming_after_enrollment_with_enough_players(self) -> None:
        assert derive_status(201, _data()) == MissionStatus.ARMING

    def test_failed_when_too_few_players(self) -> None:
        assert derive_status(201, _data(players_count=1)) == MissionStatus.FAILED
        assert derive_status(500, _data(players_count=0)) == MissionStatus.FAILED

    def test_active_once_mission_starts(self) -> None:
        assert derive_status(300, _data()) == MissionStatus.ACTIVE

    def test_paused_during_cooldown(self) -> None:
        data = _data(round_count=1, pause_timestamp=400)
        assert derive_status(699, data) == MissionStatus.PAUSED
        assert derive_status(700, data) == MissionStatus.ACTIVE

    def test_success_when_all_rounds_claimed(self) -> None:
        assert derive_status(500, _data(round_count=3)) == MissionStatus.SUCCESS

    def test_end_without_rounds_is_failed(self) -> None:
        assert derive_status(1300, _data()) == MissionStatus.FAILED

    def test_end_with_some_rounds_is_partly_success(self) -> None:
        assert derive_status(1300, _data(round_count=1)) == MissionStatus.PARTLY_SUCCESS

    def test_terminal_override_is_sticky(self) -> None:
        data = _data(terminal_status=MissionStatus.SUCCESS, round_count=1)
        assert derive_status(5000, data) == MissionStatus.SUCCESS
        assert derive_status(0, data) == MissionStatus.SUCCESS


class TestCooldown:
    def test_regular_round_uses_round_pause(self) -> None:
        assert cooldown_for(_data(round_count=1)) == 300

    def test_pause_before_final_round_uses_last_round_pause(self) -> None:
        assert cooldown_for(_data(round_count=2)) == 60

    def test_remaining(self) -> None:
        data = _data(round_count=1, pause_timestamp=400)
        assert cooldown_remaining(500, data) == 200
        assert cooldown_remaining(800, data) == 0

    def test_no_pause_recorded(self) -> None:
        assert cooldown_remaining(500, _data()) == 0
