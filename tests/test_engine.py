"""Tests for missionfactory.services.engine: enrollment, rounds, refunds and settlement."""

from collections.abc import Callable
from types import SimpleNamespace

import pytest
from conftest import (
    ENROLL_END,
    ENROLL_START,
    MISSION_END,
    MISSION_START,
    OWNER,
    FakeTransferGateway,
    enroll_players,
    player,
)

from db.enums import LimitBreach, MissionStatus, MissionType, PayoutKind
from missionfactory.services._helpers import WEEK, secret_commitment
from missionfactory.services.engine import MissionEngine, round_payout
from missionfactory.services.errors import (
    AllRoundsClaimedError,
    AlreadyEnrolledError,
    AlreadyWonError,
    ContractCallerError,
    CooldownActiveError,
    EnrollmentClosedError,
    InvalidStateError,
    MissionFullError,
    MissionNotActiveError,
    NotAuthorizedError,
    NotEnrolledError,
    PayoutInvariantError,
    RateLimitError,
    ReentrantCallError,
    TransferFailedError,
    WrongEnrollmentAmountError,
)
from missionfactory.services.registry import MissionRegistry

CreateMission = Callable[..., MissionEngine]


def _play_all_rounds(mission: MissionEngine) -> None:
    """Three rounds on the default 300-unit pot: payouts 30, 90 and 18."""
    mission.call_round(player(0), MISSION_START + 100)
    mission.call_round(player(1), MISSION_START + 400)
    mission.call_round(player(2), MISSION_START + 460)


class TestRoundPayout:
    def _mission(self, **overrides: int) -> SimpleNamespace:
        base = {"cro_start": 1000, "cro_current": 1000, "mission_start": 0, "mission_end": 1000}
        base.update(overrides)
        return SimpleNamespace(id="m", **base)

    def test_linear_release(self) -> None:
        assert round_payout(self._mission(), 200) == 200
        assert round_payout(self._mission(cro_current=800), 500) == 300

    def test_clamped_to_window(self) -> None:
        assert round_payout(self._mission(), -50) == 0
        assert round_payout(self._mission(), 5000) == 1000

    def test_never_exceeds_current_pot(self) -> None:
        # Refunds can shrink cro_current below what the curve would release.
        assert round_payout(self._mission(cro_current=100, cro_start=100), 1000) == 100

    def test_entitlement_below_paid_raises(self) -> None:
        with pytest.raises(PayoutInvariantError) as exc:
            round_payout(self._mission(cro_current=500), 100)
        assert exc.value.context["paid_so_far"] == "500"


class TestEnroll:
    def test_enroll_updates_pot(self, create_mission: CreateMission) -> None:
        mission = create_mission(initial_pot=50)
        result = mission.enroll(player(0), 100, ENROLL_START + 1)

        assert result.total_players == 1
        assert result.status == MissionStatus.ENROLLING
        m = mission.mission
        assert (m.cro_start, m.cro_current, m.balance) == (150, 150, 150)

    def test_enroll_before_window(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        with pytest.raises(EnrollmentClosedError) as exc:
            mission.enroll(player(0), 100, ENROLL_START - 1)
        assert exc.value.context["status"] == "pending"

    def test_enroll_after_window(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        with pytest.raises(EnrollmentClosedError):
            mission.enroll(player(0), 100, ENROLL_END + 1)

    def test_wrong_amount_carries_context(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        with pytest.raises(WrongEnrollmentAmountError) as exc:
            mission.enroll(player(0), 50, ENROLL_START + 1)
        assert exc.value.context == {"expected": "100", "sent": "50"}
        assert mission.mission.players_count == 0

    def test_duplicate_player(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        mission.enroll(player(0), 100, ENROLL_START + 1)
        with pytest.raises(AlreadyEnrolledError):
            mission.enroll(player(0).upper(), 100, ENROLL_START + 2)

    def test_full_mission(self, create_mission: CreateMission) -> None:
        mission = create_mission(max_players=3)
        enroll_players(mission, 3)
        with pytest.raises(MissionFullError) as exc:
            mission.enroll(player(9), 100, ENROLL_START + 100)
        assert exc.value.context["max_players"] == 3

    def test_contract_caller(
        self, create_mission: CreateMission, gateway: FakeTransferGateway
    ) -> None:
        gateway.contracts.add("0xcontract")
        mission = create_mission()
        with pytest.raises(ContractCallerError):
            mission.enroll("0xcontract", 100, ENROLL_START + 1)

    def test_weekly_limit_applies_across_missions(self, create_mission: CreateMission) -> None:
        missions = [create_mission() for _ in range(5)]
        for i, mission in enumerate(missions[:4]):
            mission.enroll(player(0), 100, ENROLL_START + i)

        with pytest.raises(RateLimitError) as exc:
            missions[4].enroll(player(0), 100, ENROLL_START + 10)
        assert exc.value.breach == LimitBreach.WEEKLY
        assert exc.value.seconds_until_retry == WEEK - 10
        assert missions[4].mission.players_count == 0

    def test_invite_only_requires_passphrase(self, create_mission: CreateMission) -> None:
        mission = create_mission(
            mission_type=MissionType.INVITE_ONLY,
            mission_rounds=2,
            secret_commitment=secret_commitment("open sesame", ENROLL_START),
        )
        with pytest.raises(EnrollmentClosedError):
            mission.enroll(player(0), 100, ENROLL_START + 1)
        with pytest.raises(EnrollmentClosedError):
            mission.enroll(player(0), 100, ENROLL_START + 1, passphrase="wrong")

        result = mission.enroll(player(0), 100, ENROLL_START + 1, passphrase="open sesame")
        assert result.total_players == 1

    def test_enrollment_is_published(
        self, create_mission: CreateMission, registry: MissionRegistry
    ) -> None:
        mission = create_mission()
        mission.enroll(player(0), 100, ENROLL_START + 1)
        changes = registry.get_changes_after(0)
        assert changes[-1]["mission_id"] == mission.mission_id
        assert changes[-1]["status"] == "enrolling"


class TestStartCondition:
    def test_too_early(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        with pytest.raises(InvalidStateError):
            mission.check_start_condition(ENROLL_END)

    def test_too_late(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        with pytest.raises(InvalidStateError) as exc:
            mission.check_start_condition(MISSION_START)
        assert exc.value.context["status"] == MissionStatus.ACTIVE.value
        assert not mission.mission.start_checked

    def test_arms_with_enough_players(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        result = mission.check_start_condition(ENROLL_END + 1)
        assert result.status == MissionStatus.ARMING
        assert result.refund is None

    def test_runs_once(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        mission.check_start_condition(ENROLL_END + 1)
        again = mission.check_start_condition(ENROLL_END + 2)
        assert again.warnings == ["Start condition already checked"]

    def test_too_few_players_fails_and_refunds(
        self,
        create_mission: CreateMission,
        registry: MissionRegistry,
        gateway: FakeTransferGateway,
    ) -> None:
        mission = create_mission()
        players = enroll_players(mission, 2)
        now = ENROLL_END + 1

        result = mission.check_start_condition(now)

        assert result.status == MissionStatus.FAILED
        assert result.refund is not None
        assert result.refund.refunded == players
        assert result.refund.failed == []
        assert mission.mission.terminal_status == MissionStatus.FAILED
        assert mission.mission.balance == 0
        for address in players:
            assert gateway.total_to(address, PayoutKind.REFUND) == 100
            assert registry.player_limits(address, now)["weekly_count"] == 0
        assert registry.state.total_failures == 1


class TestCallRound:
    def test_first_round_payout(self, create_mission: CreateMission) -> None:
        mission = create_mission(min_players=5, max_players=5, mission_rounds=5, initial_pot=500)
        enroll_players(mission, 5)
        assert mission.mission.cro_start == 1000

        result = mission.call_round(player(0), MISSION_START + 200)

        assert result.payout == 200
        assert result.cro_remaining == 800
        assert result.round_number == 1
        assert result.status == MissionStatus.PAUSED

    def test_not_active_before_start(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        with pytest.raises(MissionNotActiveError) as exc:
            mission.call_round(player(0), MISSION_START - 1)
        assert exc.value.status == MissionStatus.ARMING

    def test_cooldown(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        mission.call_round(player(0), MISSION_START + 100)
        with pytest.raises(CooldownActiveError) as exc:
            mission.call_round(player(1), MISSION_START + 150)
        assert exc.value.seconds_remaining == 250
        assert exc.value.context == {"seconds_remaining": 250}

    def test_unknown_and_repeat_players(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        with pytest.raises(NotEnrolledError):
            mission.call_round("0xstranger", MISSION_START + 100)
        mission.call_round(player(0), MISSION_START + 100)
        with pytest.raises(AlreadyWonError):
            mission.call_round(player(0), MISSION_START + 400)

    def test_failed_transfer_leaves_state_untouched(
        self, create_mission: CreateMission, gateway: FakeTransferGateway
    ) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        gateway.failing.add(player(0))
        with pytest.raises(TransferFailedError):
            mission.call_round(player(0), MISSION_START + 100)
        assert mission.mission.round_count == 0
        assert mission.mission.cro_current == 300

    def test_payouts_are_cumulative(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        payouts = [
            mission.call_round(player(0), MISSION_START + 100).payout,
            mission.call_round(player(1), MISSION_START + 400).payout,
            mission.call_round(player(2), MISSION_START + 460).payout,
        ]
        assert payouts == [30, 90, 18]
        assert sum(payouts) == 138

    def test_final_round_settles(
        self,
        create_mission: CreateMission,
        registry: MissionRegistry,
        gateway: FakeTransferGateway,
    ) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        _play_all_rounds(mission)

        m = mission.mission
        assert m.terminal_status == MissionStatus.SUCCESS
        assert (m.owner_share, m.reserve_share, m.creator_share) == (40, 122, 0)
        assert m.balance == 0
        assert m.cro_current == 0
        assert registry.state.platform_balance == 40
        assert registry.state.total_owner_earned == 40
        assert registry.funds_by_type()["daily"] == 122
        assert registry.state.total_successes == 1
        assert [w["address"] for w in mission.winners()] == [player(0), player(1), player(2)]

        with pytest.raises(AllRoundsClaimedError):
            mission.call_round(player(3), MISSION_START + 600)

    def test_reentrant_call_is_rejected(
        self, create_mission: CreateMission, gateway: FakeTransferGateway
    ) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        gateway.on_send = lambda recipient, amount: mission.call_round(
            player(1), MISSION_START + 100
        )

        with pytest.raises(ReentrantCallError):
            mission.call_round(player(0), MISSION_START + 100)
        assert mission.mission.round_count == 0
        assert not mission.locks.in_progress(mission.mission_id)


class TestRefunds:
    def test_failed_refund_is_withheld(
        self, create_mission: CreateMission, gateway: FakeTransferGateway
    ) -> None:
        mission = create_mission(min_players=4)
        players = enroll_players(mission, 3)
        gateway.failing.add(players[1])

        result = mission.check_start_condition(ENROLL_END + 1)

        refund = result.refund
        assert refund is not None
        assert refund.refunded == [players[0], players[2]]
        assert refund.failed == [players[1]]
        assert refund.settlement is not None
        assert refund.settlement.withheld == 100
        assert refund.settlement.distributable == 0
        assert mission.failed_refunds() == [players[1]]
        assert mission.mission.balance == 100

    def test_retry_clears_failed_refund(
        self, create_mission: CreateMission, gateway: FakeTransferGateway
    ) -> None:
        mission = create_mission(min_players=4)
        players = enroll_players(mission, 3)
        gateway.failing.add(players[1])
        mission.check_start_condition(ENROLL_END + 1)

        gateway.failing.clear()
        retry = mission.refund_all(ENROLL_END + 100)

        assert retry.refunded == [players[1]]
        assert retry.failed == []
        assert mission.failed_refunds() == []
        assert mission.refunded_players()["total"] == 3
        assert mission.mission.balance == 0

    def test_retry_after_forced_settle_sends_nothing(
        self,
        create_mission: CreateMission,
        registry: MissionRegistry,
        gateway: FakeTransferGateway,
    ) -> None:
        mission = create_mission(min_players=4)
        players = enroll_players(mission, 3)
        gateway.failing.add(players[1])
        mission.check_start_condition(ENROLL_END + 1)

        forced = mission.settle(OWNER, force=True, now=ENROLL_END + 50)
        assert forced.distributable == 100
        assert mission.mission.balance == 0
        platform_balance = registry.state.platform_balance
        owner_earned = registry.state.total_owner_earned

        gateway.failing.clear()
        retry = mission.refund_all(ENROLL_END + 100)

        assert retry.refunded == []
        assert retry.failed == [players[1]]
        assert gateway.total_to(players[1], PayoutKind.REFUND) == 0
        assert mission.mission.balance == 0
        assert mission.failed_refunds() == [players[1]]
        settlement = retry.settlement
        assert settlement is not None
        assert settlement.distributable == 0
        assert (settlement.owner_share, settlement.reserve_share) == (0, 0)
        assert registry.state.platform_balance == platform_balance
        assert registry.state.total_owner_earned == owner_earned

        again = mission.settle(OWNER, force=True, now=ENROLL_END + 200)
        assert again.distributable == 0
        assert again.owner_share == 0

    def test_refund_requires_failed_mission(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        with pytest.raises(InvalidStateError):
            mission.refund_all(MISSION_START + 10)


class TestSettlement:
    def test_default_type_split(self, create_mission: CreateMission) -> None:
        mission = create_mission(initial_pot=1000)
        enroll_players(mission, 2)
        result = mission.check_start_condition(ENROLL_END + 1)

        assert result.refund is not None
        settlement = result.refund.settlement
        assert settlement is not None
        assert (settlement.owner_share, settlement.reserve_share) == (250, 750)

    def test_invite_only_goes_to_owner(self, create_mission: CreateMission) -> None:
        mission = create_mission(
            mission_type=MissionType.INVITE_ONLY,
            mission_rounds=2,
            initial_pot=1000,
            secret_commitment=secret_commitment("pass", ENROLL_START),
        )
        result = mission.check_start_condition(ENROLL_END + 1)

        assert result.refund is not None
        settlement = result.refund.settlement
        assert settlement is not None
        assert settlement.owner_share == 1000
        assert settlement.reserve_share == 0

    def test_user_mission_pays_creator(
        self, create_mission: CreateMission, gateway: FakeTransferGateway
    ) -> None:
        mission = create_mission(
            caller="0xcreator",
            mission_type=MissionType.USER_MISSION,
            mission_rounds=2,
            initial_pot=1001,
        )
        mission.check_start_condition(ENROLL_END + 1)

        m = mission.mission
        assert (m.creator_share, m.owner_share) == (500, 501)
        assert gateway.total_to("0xcreator", PayoutKind.CREATOR_SHARE) == 500

    def test_failed_creator_transfer_keeps_share(
        self, create_mission: CreateMission, gateway: FakeTransferGateway
    ) -> None:
        gateway.failing.add("0xcreator")
        mission = create_mission(
            caller="0xcreator",
            mission_type=MissionType.USER_MISSION,
            mission_rounds=2,
            initial_pot=1000,
        )
        mission.check_start_condition(ENROLL_END + 1)
        assert mission.mission.creator_share == 0
        assert mission.mission.owner_share == 500
        assert mission.mission.balance == 500

        gateway.failing.clear()
        later = mission.settle(OWNER, force=False, now=ENROLL_END + 100)
        assert later.creator_share == 250
        assert mission.mission.balance == 0

    def test_settle_requires_authorization(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        with pytest.raises(NotAuthorizedError):
            mission.settle("0xnobody", force=False, now=ENROLL_END + 1)

    def test_settle_requires_terminal_status(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        with pytest.raises(InvalidStateError):
            mission.settle(OWNER, force=False, now=MISSION_START + 10)


class TestForceFinalize:
    def test_partly_success_becomes_success(
        self, create_mission: CreateMission, registry: MissionRegistry
    ) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        mission.call_round(player(0), MISSION_START + 100)
        assert mission.status(MISSION_END) == MissionStatus.PARTLY_SUCCESS

        settlement = mission.force_finalize(OWNER, MISSION_END)

        assert mission.status(MISSION_END + 1) == MissionStatus.SUCCESS
        assert (settlement.owner_share, settlement.reserve_share) == (67, 203)
        assert registry.state.total_successes == 1

    def test_only_from_partly_success(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        with pytest.raises(InvalidStateError):
            mission.force_finalize(OWNER, MISSION_START + 10)

    def test_requires_authorization(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        with pytest.raises(NotAuthorizedError):
            mission.force_finalize("0xnobody", MISSION_END)


class TestReadApi:
    def test_rollup_and_snapshot(self, create_mission: CreateMission) -> None:
        mission = create_mission()
        enroll_players(mission, 3)
        mission.call_round(player(0), MISSION_START + 100)
        now = MISSION_START + 150

        rollup = mission.rollup(now)
        assert rollup["status"] == "paused"
        assert rollup["winners_count"] == 1
        assert rollup["cro_current"] == "270"

        snap = mission.snapshot(now)
        assert snap["players_count"] == 3
        assert snap["winners"][0]["amount"] == "30"
        assert snap["refunded_players"] == []
