"""就餐确认服务测试"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta

import pytest

from ..core.clock import REFERENCE_TIMEZONE, to_storage
from ..core.exceptions import (
    AlreadyConfirmedError,
    BaseApplicationError,
    InvalidInputError,
    NotReservedError,
    OutsideMealWindowError,
    PermissionDeniedError,
    PersonNotFoundError,
    TokenInvalidError,
    TokenRevokedError,
)
from ..models.confirmation import AuditFilter, ConfirmationChannel
from ..models.reservation import ConsumptionStatus, MealCategory
from .conftest import TODAY


def log_count(test_db, reservation_id=None):
    if reservation_id is None:
        return test_db.execute_one("SELECT COUNT(*) FROM confirmation_logs")[0]
    return test_db.execute_one(
        "SELECT COUNT(*) FROM confirmation_logs WHERE reservation_id=?", [reservation_id]
    )[0]


@pytest.fixture
def lunch(services):
    """今天的午餐报餐：u1 报餐，成员 u1 u2 u3"""
    return services.reservations.submit("u1", TODAY, "lunch", ["u1", "u2", "u3"])


class TestConfirmSelf:

    def test_confirm_self_success(self, services, lunch, clock, test_db):
        result = services.confirmations.confirm_self(lunch.id, "u2", "u2")

        assert result.reservation_id == lunch.id
        assert result.person_id == "u2"
        assert result.actor_id == "u2"
        assert result.channel == ConfirmationChannel.SELF
        assert result.meal_date == date(2024, 6, 1)
        assert result.meal_category == MealCategory.LUNCH
        assert result.consumed_at == clock.now()

        reservation = services.reservations.get(lunch.id)
        assert reservation.consumption_status == ConsumptionStatus.CONSUMED
        assert reservation.consumption_timestamp == clock.now()
        assert reservation.member("u2").consumption_status == ConsumptionStatus.CONSUMED
        assert reservation.member("u1").consumption_status == ConsumptionStatus.RESERVED
        assert log_count(test_db, lunch.id) == 1

    def test_requester_may_confirm_member(self, services, lunch):
        result = services.confirmations.confirm_self(lunch.id, "u3", "u1")
        assert result.actor_id == "u1"

    def test_other_member_denied(self, services, lunch, test_db):
        with pytest.raises(PermissionDeniedError):
            services.confirmations.confirm_self(lunch.id, "u3", "u2")
        assert log_count(test_db) == 0

    def test_confirm_twice_rejected(self, services, lunch, test_db):
        services.confirmations.confirm_self(lunch.id, "u1", "u1")
        with pytest.raises(AlreadyConfirmedError) as exc_info:
            services.confirmations.confirm_self(lunch.id, "u1", "u1")
        assert exc_info.value.details == {"reservation_id": lunch.id, "person_id": "u1"}
        assert log_count(test_db) == 1

    def test_first_confirmation_sets_timestamp(self, services, lunch, clock):
        services.confirmations.confirm_self(lunch.id, "u1", "u1")
        first = clock.now()
        clock.advance(minutes=10)
        services.confirmations.confirm_self(lunch.id, "u2", "u2")

        reservation = services.reservations.get(lunch.id)
        assert reservation.consumption_timestamp == first
        assert reservation.member("u2").consumed_at == clock.now()

    def test_not_a_member(self, services, lunch):
        with pytest.raises(NotReservedError) as exc_info:
            services.confirmations.confirm_self(lunch.id, "u9", "u9")
        assert exc_info.value.details["reservation_id"] == lunch.id

    def test_unknown_reservation(self, services):
        with pytest.raises(NotReservedError):
            services.confirmations.confirm_self(4242, "u1", "u1")

    def test_unknown_person(self, services, lunch):
        with pytest.raises(PersonNotFoundError):
            services.confirmations.confirm_self(lunch.id, "ghost", "ghost")

    def test_cancelled_reservation(self, services, lunch):
        services.reservations.cancel(lunch.id, "u1")
        with pytest.raises(NotReservedError):
            services.confirmations.confirm_self(lunch.id, "u1", "u1")

    def test_completed_reservation(self, services, lunch):
        services.reservations.complete(lunch.id, "admin")
        with pytest.raises(NotReservedError):
            services.confirmations.confirm_self(lunch.id, "u1", "u1")

    def test_approved_reservation_still_confirmable(self, services, lunch):
        services.reservations.approve(lunch.id, "admin")
        assert services.confirmations.confirm_self(lunch.id, "u1", "u1").person_id == "u1"


class TestConfirmAdmin:

    def test_confirm_admin(self, services, lunch):
        result = services.confirmations.confirm_admin(lunch.id, "u3", "admin", "补登")
        assert result.channel == ConfirmationChannel.ADMIN
        entries = services.audit.list_entries(AuditFilter(reservation_id=lunch.id))
        assert [(e.person_id, e.actor_id, e.note) for e in entries] == [("u3", "admin", "补登")]

    def test_admin_default_note(self, services, lunch):
        services.confirmations.confirm_admin(lunch.id, "u3", "admin")
        entry = services.audit.list_entries(AuditFilter(person_id="u3"))[0]
        assert entry.note == "管理员代确认就餐"

    def test_batch(self, services, lunch):
        result = services.confirmations.confirm_admin_batch(
            [(lunch.id, "u1"), (lunch.id, "u1"), (lunch.id, "u9"), (999, "u2"), (lunch.id, "u2")],
            actor_id="admin",
        )
        assert result.total_count == 5
        assert result.success_count == 2
        assert [r.person_id for r in result.results] == ["u1", "u2"]
        assert [(e.person_id, e.error_code) for e in result.errors] == [
            ("u1", "ALREADY_CONFIRMED"),
            ("u9", "NOT_RESERVED"),
            ("u2", "NOT_RESERVED"),
        ]

    def test_concurrent_confirmations_single_winner(self, services, lunch, test_db):
        attempts = 16

        def attempt(_):
            try:
                services.confirmations.confirm_admin(lunch.id, "u2", "admin")
                return "ok"
            except AlreadyConfirmedError:
                return "already"

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(attempts)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("already") == attempts - 1
        assert test_db.execute_one(
            "SELECT COUNT(*) FROM confirmation_logs WHERE reservation_id=? AND person_id='u2'",
            [lunch.id],
        )[0] == 1

    def test_concurrent_mixed_channels(self, services, lunch, add_badge, test_db):
        add_badge("B-u1", person_id="u1")
        calls = [
            lambda: services.confirmations.confirm_self(lunch.id, "u1", "u1"),
            lambda: services.confirmations.confirm_admin(lunch.id, "u1", "admin"),
            lambda: services.confirmations.confirm_by_badge("B-u1"),
        ] * 4

        def run(call):
            try:
                call()
                return True
            except AlreadyConfirmedError:
                return False

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(run, calls))

        assert outcomes.count(True) == 1
        assert log_count(test_db, lunch.id) == 1


class TestConfirmByBadge:

    @pytest.fixture
    def scenario_clock(self, clock):
        clock.set(datetime(2025, 9, 17, 12, 30, tzinfo=REFERENCE_TIMEZONE))
        return clock

    def test_scenario_badge_then_repeat(self, services, scenario_clock, add_badge):
        reservation = services.reservations.submit("u1", "2025-09-17", "lunch", ["u1"])
        add_badge("B-u1", person_id="u1")

        result = services.confirmations.confirm_by_badge("B-u1")
        assert result.reservation_id == reservation.id
        assert result.channel == ConfirmationChannel.BADGE
        entries = services.audit.list_entries(AuditFilter(reservation_id=reservation.id))
        assert [e.channel for e in entries] == [ConfirmationChannel.BADGE]

        with pytest.raises(AlreadyConfirmedError):
            services.confirmations.confirm_by_badge("B-u1")

    def test_scenario_outside_window(self, services, scenario_clock, add_badge, test_db):
        reservation = services.reservations.submit("u1", "2025-09-17", "lunch", ["u1"])
        add_badge("B-u1", person_id="u1")
        scenario_clock.set(datetime(2025, 9, 17, 15, 0, tzinfo=REFERENCE_TIMEZONE))

        with pytest.raises(OutsideMealWindowError) as exc_info:
            services.confirmations.confirm_by_badge("B-u1")

        assert exc_info.value.details["local_time"] == "2025-09-17 15:00:00"
        assert exc_info.value.details["windows"] == [
            "早餐 06:00-10:00", "午餐 11:00-14:00", "晚餐 17:00-20:00",
        ]
        assert services.reservations.get(reservation.id) == reservation
        assert log_count(test_db) == 0

    def test_badge_uses_server_category(self, services, clock, add_badge):
        services.reservations.submit("u1", TODAY, "dinner", ["u1"])
        add_badge("B-u1", person_id="u1")
        # 12:00 是午餐时段，只有晚餐报餐
        with pytest.raises(NotReservedError) as exc_info:
            services.confirmations.confirm_by_badge("B-u1")
        assert exc_info.value.details["meal_category"] == "lunch"
        assert exc_info.value.details["meal_date"] == TODAY

    def test_badge_uses_reference_date(self, services, clock, add_badge):
        # 北京时间 06-02 07:00 = UTC 06-01 23:00
        clock.set(datetime(2024, 6, 2, 7, 0, tzinfo=REFERENCE_TIMEZONE))
        reservation = services.reservations.submit("u1", "2024-06-02", "breakfast", ["u1"])
        add_badge("B-u1", person_id="u1")
        assert services.confirmations.confirm_by_badge("B-u1").reservation_id == reservation.id

    def test_location_code_uses_scanner(self, services, lunch, add_badge):
        add_badge("LOC-1", location="一楼食堂")
        result = services.confirmations.confirm_by_badge("LOC-1", scanner_id="u2")
        assert result.person_id == "u2"
        assert result.actor_id == "u2"
        entry = services.audit.list_entries(AuditFilter(person_id="u2"))[0]
        assert entry.note == "扫码确认就餐 - 一楼食堂"

    def test_location_code_without_scanner(self, services, lunch, add_badge):
        add_badge("LOC-1", location="一楼食堂")
        with pytest.raises(TokenInvalidError) as exc_info:
            services.confirmations.confirm_by_badge("LOC-1")
        assert exc_info.value.details["reason"] == "no_holder"

    @pytest.mark.parametrize("code", ["", "   ", "NOPE"])
    def test_invalid_token(self, services, lunch, code):
        with pytest.raises(TokenInvalidError):
            services.confirmations.confirm_by_badge(code)

    def test_revoked_token(self, services, lunch, add_badge):
        add_badge("B-u1", person_id="u1", status="revoked")
        with pytest.raises(TokenRevokedError):
            services.confirmations.confirm_by_badge("B-u1")

    def test_expired_token(self, services, lunch, add_badge, clock):
        add_badge("T-1", person_id="u1", expires_at=clock.now() - timedelta(seconds=1))
        with pytest.raises(TokenInvalidError) as exc_info:
            services.confirmations.confirm_by_badge("T-1")
        assert exc_info.value.details["reason"] == "expired"

    def test_single_use_token(self, services, lunch, add_badge, clock, test_db):
        add_badge("T-1", person_id="u1", expires_at=clock.now() + timedelta(minutes=5))
        services.confirmations.confirm_by_badge("T-1")

        used_at = test_db.execute_one("SELECT used_at FROM badge_tokens WHERE code='T-1'")[0]
        assert used_at is not None
        with pytest.raises(TokenInvalidError) as exc_info:
            services.confirmations.confirm_by_badge("T-1")
        assert exc_info.value.details["reason"] == "used"

    def test_single_use_token_kept_on_rejection(self, services, add_badge, clock, test_db):
        add_badge("T-1", person_id="u1", expires_at=clock.now() + timedelta(minutes=5))
        with pytest.raises(NotReservedError):
            services.confirmations.confirm_by_badge("T-1")
        assert test_db.execute_one("SELECT used_at FROM badge_tokens WHERE code='T-1'")[0] is None

    def test_stale_token_rolls_back(self, services, lunch, add_badge, clock, test_db, monkeypatch):
        add_badge("T-1", person_id="u1", expires_at=clock.now() + timedelta(minutes=5))
        stale = services.badges.validate("T-1")
        test_db.execute_query(
            "UPDATE badge_tokens SET used_at=? WHERE code='T-1'", [to_storage(clock.now())]
        )
        monkeypatch.setattr(services.badges, "validate", lambda code: stale)

        with pytest.raises(TokenInvalidError):
            services.confirmations.confirm_by_badge("T-1")

        reservation = services.reservations.get(lunch.id)
        assert reservation.member("u1").consumption_status == ConsumptionStatus.RESERVED
        assert reservation.consumption_timestamp is None
        assert log_count(test_db) == 0

    def test_personal_badge_reusable(self, services, clock, add_badge):
        add_badge("B-u1", person_id="u1")
        services.reservations.submit("u1", TODAY, "lunch", ["u1"])
        services.reservations.submit("u1", TODAY, "dinner", ["u1"])

        services.confirmations.confirm_by_badge("B-u1")
        clock.advance(hours=6)
        assert services.confirmations.confirm_by_badge("B-u1").meal_category == MealCategory.DINNER


class TestStatusAndStats:

    def test_status(self, services, lunch):
        services.reservations.submit("u1", TODAY, "dinner", ["u1"])
        services.confirmations.confirm_self(lunch.id, "u1", "u1")

        status = services.confirmations.get_status(TODAY, "u1")
        assert status.name == "张三"
        assert status.meal_date == date(2024, 6, 1)
        assert status.meals["lunch"].registered
        assert status.meals["lunch"].consumption_status == "consumed"
        assert status.meals["lunch"].consumed_at is not None
        assert status.meals["dinner"].consumption_status == "reserved"
        assert not status.meals["breakfast"].registered
        assert status.summary == {
            "total_registered": 2,
            "total_consumed": 1,
            "pending_confirmation": 1,
            "unregistered": 1,
        }

    def test_status_ignores_cancelled(self, services, lunch):
        services.reservations.cancel(lunch.id, "u1")
        status = services.confirmations.get_status(TODAY, "u2")
        assert status.summary["total_registered"] == 0

    def test_status_invalid_date(self, services):
        with pytest.raises(InvalidInputError):
            services.confirmations.get_status("06/01/2024", "u1")

    def test_daily_stats(self, services, lunch):
        other = services.reservations.submit("u9", TODAY, "lunch", ["u9"])
        dinner = services.reservations.submit("u1", TODAY, "dinner", ["u1", "u2"])
        services.reservations.cancel(dinner.id, "u1")
        services.confirmations.confirm_self(lunch.id, "u1", "u1")
        services.confirmations.confirm_self(other.id, "u9", "u9")

        stats = services.confirmations.get_daily_stats(TODAY)
        assert stats.categories["lunch"].model_dump() == {"reserved": 2, "consumed": 2, "cancelled": 0}
        assert stats.categories["dinner"].model_dump() == {"reserved": 0, "consumed": 0, "cancelled": 2}
        assert stats.total.model_dump() == {"reserved": 2, "consumed": 2, "cancelled": 2}

        d2 = services.confirmations.get_daily_stats(TODAY, department_id="d2")
        assert d2.total.model_dump() == {"reserved": 0, "consumed": 1, "cancelled": 0}


def test_errors_carry_codes(services, lunch):
    services.confirmations.confirm_self(lunch.id, "u1", "u1")
    try:
        services.confirmations.confirm_admin(lunch.id, "u1", "admin")
    except BaseApplicationError as e:
        assert e.to_dict()["error_code"] == "ALREADY_CONFIRMED"
        assert not e.retryable
    else:
        pytest.fail("expected AlreadyConfirmedError")
