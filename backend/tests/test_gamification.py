"""
Tests for XP, levels, streaks, vacation mode and achievements.
"""

import pytest
from datetime import date, datetime, timedelta
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.orm import Session

from orbit.models.models import (
    CalendarEvent,
    DailyActivity,
    GamificationCredit,
    MonthlyXpTotal,
    Task,
    User,
    UserAchievement,
)
from orbit.services.gamification import (
    XP_PER_COMPLETION,
    calculate_level,
    get_gamification_service,
    is_streak_broken,
    xp_stats,
)

NOW = datetime(2026, 1, 6, 15, 0)
TODAY = date(2026, 1, 6)


@pytest.fixture
def service():
    return get_gamification_service()


def _complete(service, db: Session, user: User, item_id: str = None, now: datetime = NOW, **kwargs):
    return service.process_task_completion(
        db, user.id, item_type=kwargs.pop("item_type", "task"), item_id=item_id, now=now, **kwargs
    )


def _set_streak(service, db: Session, user: User, **fields):
    streak = service.get_or_create_streak(db, user.id)
    for name, value in fields.items():
        setattr(streak, name, value)
    db.commit()
    return streak


class TestLevels:

    @pytest.mark.unit
    @pytest.mark.parametrize("total_xp,expected", [
        (0, 1),
        (74, 1),
        (75, 2),
        (1599, 9),
        (1600, 10),
        (1949, 10),
        (1950, 11),
        (2300, 12),
    ])
    def test_calculate_level(self, total_xp, expected):
        assert calculate_level(total_xp) == expected

    @pytest.mark.unit
    def test_xp_stats(self):
        stats = xp_stats(100)
        assert stats == {
            "total_xp": 100,
            "level": 2,
            "xp_in_level": 25,
            "xp_for_next_level": 100,
            "progress_percent": 25,
        }

    @pytest.mark.unit
    def test_xp_stats_past_table(self):
        stats = xp_stats(1775)
        assert stats["level"] == 10
        assert stats["xp_for_next_level"] == 350
        assert stats["progress_percent"] == 50

    @pytest.mark.unit
    def test_is_streak_broken(self):
        assert is_streak_broken(None, TODAY) is False
        assert is_streak_broken(TODAY, TODAY) is False
        assert is_streak_broken(TODAY - timedelta(days=1), TODAY) is False
        assert is_streak_broken(TODAY - timedelta(days=2), TODAY) is True


class TestCompletionCredit:

    @pytest.mark.unit
    def test_first_completion(self, service, db: Session, test_user: User):
        """First completion earns base XP plus the first-step achievement"""
        result = _complete(service, db, test_user, "task-1")

        assert result["credited"] is True
        assert result["xp_earned"] == XP_PER_COMPLETION + 10
        assert result["total_xp"] == 20
        assert result["level"] == 1
        assert result["current_streak"] == 1
        assert result["streak_updated"] is True
        assert [a["key"] for a in result["new_achievements"]] == ["tasks_1"]

    @pytest.mark.unit
    def test_same_item_credited_once(self, service, db: Session, test_user: User):
        first = _complete(service, db, test_user, "task-1")
        second = _complete(service, db, test_user, "task-1", now=NOW + timedelta(minutes=5))

        assert second["credited"] is False
        assert second["xp_earned"] == 0
        assert second["total_xp"] == first["total_xp"]
        assert db.query(GamificationCredit).filter(GamificationCredit.user_id == test_user.id).count() == 1

    @pytest.mark.unit
    def test_same_id_different_type_is_separate(self, service, db: Session, test_user: User):
        _complete(service, db, test_user, "shared-id")
        result = _complete(service, db, test_user, "shared-id", item_type="flashcard")

        assert result["credited"] is True

    @pytest.mark.unit
    def test_daily_activity_uses_local_day(self, service, db: Session, test_user: User):
        """03:00 UTC with a +300 offset is 22:00 the previous local day"""
        _complete(service, db, test_user, "task-1", now=datetime(2026, 1, 6, 3, 0), timezone_offset=300)

        activity = db.query(DailyActivity).filter(DailyActivity.user_id == test_user.id).one()
        assert activity.activity_date == date(2026, 1, 5)
        assert activity.tasks_completed == 1
        assert activity.xp_earned == 20

        streak = service.get_or_create_streak(db, test_user.id)
        assert streak.last_activity_date == date(2026, 1, 5)

    @pytest.mark.unit
    def test_two_completions_share_daily_row(self, service, db: Session, test_user: User):
        _complete(service, db, test_user, "task-1")
        _complete(service, db, test_user, "task-2")

        activity = db.query(DailyActivity).filter(DailyActivity.user_id == test_user.id).one()
        assert activity.tasks_completed == 2
        assert activity.xp_earned == 30

    @pytest.mark.unit
    def test_concurrent_xp_not_overwritten(self, service, db: Session, test_user: User):
        """XP written by another request between loads survives the next completion"""
        _complete(service, db, test_user, "task-1")
        activity = db.query(DailyActivity).filter(DailyActivity.user_id == test_user.id).one()
        monthly = db.query(MonthlyXpTotal).filter(MonthlyXpTotal.user_id == test_user.id).one()
        service.get_or_create_streak(db, test_user.id)

        # Another writer bumps every counter behind the session's back
        db.execute(text("UPDATE daily_activity SET xp_earned = xp_earned + 100 WHERE id = :id"), {"id": activity.id})
        db.execute(text("UPDATE monthly_xp_totals SET total_xp = total_xp + 100 WHERE id = :id"), {"id": monthly.id})
        db.execute(
            text("UPDATE user_streaks SET total_xp = total_xp + 100 WHERE user_id = :user_id"),
            {"user_id": test_user.id},
        )

        result = _complete(service, db, test_user, "task-2")

        db.expire_all()
        assert result["total_xp"] == 130
        assert db.query(DailyActivity).filter(DailyActivity.user_id == test_user.id).one().xp_earned == 130
        assert db.query(MonthlyXpTotal).filter(MonthlyXpTotal.user_id == test_user.id).one().total_xp == 130

    @pytest.mark.unit
    def test_monthly_total_for_college_member(self, service, db: Session, test_user: User):
        _complete(service, db, test_user, "task-1")

        monthly = db.query(MonthlyXpTotal).filter(MonthlyXpTotal.user_id == test_user.id).one()
        assert monthly.year_month == "2026-01"
        assert monthly.college_id == test_user.college_id
        assert monthly.total_xp == 20

    @pytest.mark.unit
    def test_no_monthly_total_without_college(self, service, db: Session, other_user: User):
        result = _complete(service, db, other_user, "task-1")

        assert result["credited"] is True
        assert db.query(MonthlyXpTotal).filter(MonthlyXpTotal.user_id == other_user.id).count() == 0
        assert db.query(DailyActivity).filter(DailyActivity.user_id == other_user.id).count() == 1

    @pytest.mark.unit
    def test_unknown_user(self, service, db: Session):
        with pytest.raises(ValueError):
            service.process_task_completion(db, "nobody", item_id="task-1", now=NOW)


class TestStreaks:

    @pytest.mark.unit
    def test_streak_extends_from_yesterday(self, service, db: Session, test_user: User):
        _set_streak(
            service, db, test_user,
            current_streak=4, longest_streak=4,
            last_activity_date=TODAY - timedelta(days=1),
        )

        result = _complete(service, db, test_user, "task-1")

        assert result["current_streak"] == 5
        assert result["longest_streak"] == 5
        assert result["streak_updated"] is True

    @pytest.mark.unit
    def test_gap_resets_streak(self, service, db: Session, test_user: User):
        _set_streak(
            service, db, test_user,
            current_streak=6, longest_streak=6,
            last_activity_date=TODAY - timedelta(days=3),
        )

        result = _complete(service, db, test_user, "task-1")

        assert result["current_streak"] == 1
        assert result["longest_streak"] == 6

    @pytest.mark.unit
    def test_second_completion_same_day(self, service, db: Session, test_user: User):
        _set_streak(
            service, db, test_user,
            current_streak=2, longest_streak=2,
            last_activity_date=TODAY,
        )

        result = _complete(service, db, test_user, "task-1")

        assert result["current_streak"] == 2
        assert result["streak_updated"] is False

    @pytest.mark.unit
    def test_vacation_freezes_streak(self, service, db: Session, test_user: User):
        """A 10 day gap during vacation keeps the streak; XP is still earned"""
        last = TODAY - timedelta(days=10)
        _set_streak(
            service, db, test_user,
            current_streak=5, longest_streak=5,
            last_activity_date=last,
            vacation_mode=True,
            total_tasks_completed=1,
            total_xp=10,
        )

        result = _complete(service, db, test_user, "task-1")

        assert result["credited"] is True
        assert result["current_streak"] == 5
        assert result["streak_updated"] is False
        assert result["total_xp"] >= 20
        assert service.get_or_create_streak(db, test_user.id).last_activity_date == last

    @pytest.mark.unit
    def test_stale_streak_reset_on_read(self, service, db: Session, test_user: User):
        _set_streak(
            service, db, test_user,
            current_streak=5, longest_streak=8,
            last_activity_date=TODAY - timedelta(days=3),
        )

        data = service.get_user_gamification_data(db, test_user.id, now=NOW)

        assert data["streak"]["current_streak"] == 0
        assert data["streak"]["longest_streak"] == 8

    @pytest.mark.unit
    def test_stale_streak_kept_on_vacation(self, service, db: Session, test_user: User):
        _set_streak(
            service, db, test_user,
            current_streak=5, longest_streak=5,
            last_activity_date=TODAY - timedelta(days=3),
            vacation_mode=True,
        )

        data = service.get_user_gamification_data(db, test_user.id, now=NOW)

        assert data["streak"]["current_streak"] == 5

    @pytest.mark.unit
    def test_streak_from_yesterday_kept_on_read(self, service, db: Session, test_user: User):
        _set_streak(
            service, db, test_user,
            current_streak=3, longest_streak=3,
            last_activity_date=TODAY - timedelta(days=1),
        )

        data = service.get_user_gamification_data(db, test_user.id, now=NOW)

        assert data["streak"]["current_streak"] == 3


class TestVacationMode:

    @pytest.mark.unit
    def test_toggle_on_and_off(self, service, db: Session, test_user: User):
        last = TODAY - timedelta(days=1)
        _set_streak(service, db, test_user, current_streak=3, longest_streak=3, last_activity_date=last)

        streak = service.toggle_vacation_mode(db, test_user.id, True, now=NOW)
        assert streak.vacation_mode is True
        assert streak.vacation_started_at == NOW

        streak = service.toggle_vacation_mode(db, test_user.id, False, now=NOW + timedelta(days=2))
        assert streak.vacation_mode is False
        assert streak.vacation_started_at is None
        assert streak.last_activity_date == last
        assert streak.current_streak == 3

    @pytest.mark.unit
    def test_enabling_twice_keeps_start(self, service, db: Session, test_user: User):
        service.toggle_vacation_mode(db, test_user.id, True, now=NOW)
        streak = service.toggle_vacation_mode(db, test_user.id, True, now=NOW + timedelta(days=1))

        assert streak.vacation_started_at == NOW


class TestAchievements:

    @pytest.mark.unit
    def test_early_bird(self, service, db: Session, test_user: User):
        """12:00 UTC at +300 is 07:00 local"""
        results = [
            _complete(service, db, test_user, f"task-{i}", now=datetime(2026, 1, 6, 12, 0), timezone_offset=300)
            for i in range(5)
        ]

        streak = service.get_or_create_streak(db, test_user.id)
        assert streak.early_bird_count == 5
        assert "early_bird" in [a["key"] for a in results[-1]["new_achievements"]]

    @pytest.mark.unit
    def test_night_owl(self, service, db: Session, test_user: User):
        """04:30 UTC at +300 is 23:30 local on the previous day"""
        _complete(service, db, test_user, "task-1", now=datetime(2026, 1, 6, 4, 30), timezone_offset=300)

        streak = service.get_or_create_streak(db, test_user.id)
        assert streak.night_owl_count == 1
        assert streak.early_bird_count == 0

    @pytest.mark.unit
    def test_achievement_awarded_once(self, service, db: Session, test_user: User):
        _complete(service, db, test_user, "task-1")
        second = _complete(service, db, test_user, "task-2")

        assert second["new_achievements"] == []
        assert db.query(UserAchievement).filter(UserAchievement.user_id == test_user.id).count() == 1

    @pytest.mark.unit
    def test_streak_achievement(self, service, db: Session, test_user: User):
        _set_streak(
            service, db, test_user,
            current_streak=2, longest_streak=2,
            last_activity_date=TODAY - timedelta(days=1),
        )

        result = _complete(service, db, test_user, "task-1")

        assert "streak_3" in [a["key"] for a in result["new_achievements"]]

    @pytest.mark.unit
    def test_data_lists_catalogue(self, service, db: Session, test_user: User):
        _complete(service, db, test_user, "task-1")

        data = service.get_user_gamification_data(db, test_user.id, now=NOW)

        assert len(data["achievements"]) == 12
        assert [a["key"] for a in data["unlocked_achievements"]] == ["tasks_1"]
        assert data["xp"]["total_xp"] == 20
        assert data["recent_activity"][0]["date"] == "2026-01-06"

    @pytest.mark.unit
    def test_seeding_is_idempotent(self, service, db: Session):
        assert service.seed_achievements(db) == 0


class TestGamificationEndpoints:

    @pytest.mark.api
    def test_record_completion(self, client: TestClient, db: Session, test_user: User, auth_headers):
        task = Task(user_id=test_user.id, title="Essay", due_at=NOW, status="done")
        db.add(task)
        db.commit()

        payload = {"itemType": "task", "itemId": task.id, "timezoneOffset": 0}
        first = client.post("/api/gamification/record", json=payload, headers=auth_headers)
        second = client.post("/api/gamification/record", json=payload, headers=auth_headers)

        assert first.status_code == 200
        assert first.json()["credited"] is True
        assert second.status_code == 200
        assert second.json()["credited"] is False
        assert second.json()["xp_earned"] == 0

    @pytest.mark.api
    def test_record_other_users_item(self, client: TestClient, db: Session, other_user: User, auth_headers):
        task = Task(user_id=other_user.id, title="Not yours", due_at=NOW)
        db.add(task)
        db.commit()

        response = client.post(
            "/api/gamification/record",
            json={"itemType": "task", "itemId": task.id},
            headers=auth_headers,
        )
        assert response.status_code == 404

    @pytest.mark.api
    def test_record_flashcard(self, client: TestClient, auth_headers):
        response = client.post(
            "/api/gamification/record",
            json={"itemType": "flashcard", "itemId": "card-1"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["credited"] is True

    @pytest.mark.api
    def test_record_unsupported_type(self, client: TestClient, auth_headers):
        response = client.post(
            "/api/gamification/record",
            json={"itemType": "homework", "itemId": "x"},
            headers=auth_headers,
        )
        assert response.status_code == 400

    @pytest.mark.api
    def test_record_calendar_event_rejected(self, client: TestClient, db: Session, test_user: User, auth_headers):
        """Calendar events are never completable, so they earn no XP"""
        event = CalendarEvent(user_id=test_user.id, title="Lecture", start_at=NOW)
        db.add(event)
        db.commit()

        response = client.post(
            "/api/gamification/record",
            json={"itemType": "calendar_event", "itemId": event.id},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert db.query(GamificationCredit).filter(GamificationCredit.user_id == test_user.id).count() == 0

    @pytest.mark.api
    def test_get_gamification(self, client: TestClient, auth_headers):
        response = client.get("/api/gamification?tz=0", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["xp"]["level"] == 1
        assert data["streak"]["current_streak"] == 0
        assert len(data["daily_challenges"]) == 3

    @pytest.mark.api
    def test_toggle_vacation(self, client: TestClient, auth_headers):
        on = client.patch("/api/gamification", json={"vacationMode": True}, headers=auth_headers)
        assert on.status_code == 200
        assert on.json()["vacation_mode"] is True
        assert on.json()["vacation_started_at"] is not None

        off = client.patch("/api/gamification", json={"vacationMode": False}, headers=auth_headers)
        assert off.json()["vacation_mode"] is False
        assert off.json()["vacation_started_at"] is None

    @pytest.mark.api
    def test_requires_auth(self, client: TestClient):
        assert client.get("/api/gamification").status_code == 401


class TestItemCompletion:

    @pytest.mark.api
    def test_completing_item_credits_once(self, client: TestClient, db: Session, test_user: User, auth_headers):
        task = Task(user_id=test_user.id, title="Reading", due_at=NOW)
        db.add(task)
        db.commit()
        url = f"/api/items/task/{task.id}"

        done = client.patch(url, json={"status": "done"}, headers=auth_headers)
        assert done.status_code == 200
        assert done.json()["item"]["status"] == "done"
        assert done.json()["gamification"]["credited"] is True

        again = client.patch(url, json={"status": "done"}, headers=auth_headers)
        assert again.json()["gamification"] is None

        client.patch(url, json={"status": "open"}, headers=auth_headers)
        redone = client.patch(url, json={"status": "done"}, headers=auth_headers)
        assert redone.json()["gamification"]["credited"] is False

    @pytest.mark.api
    def test_calendar_events_cannot_be_completed(self, client: TestClient, auth_headers):
        response = client.patch("/api/items/calendar_event/abc", json={"status": "done"}, headers=auth_headers)
        assert response.status_code == 400

    @pytest.mark.api
    def test_missing_item(self, client: TestClient, auth_headers):
        response = client.patch("/api/items/task/missing", json={"status": "done"}, headers=auth_headers)
        assert response.status_code == 404
