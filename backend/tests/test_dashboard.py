"""
Tests for the dashboard: gift reminders and the aggregate endpoint.
"""
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

from fastapi.testclient import TestClient

from giftcircle.main import app
from giftcircle.models.models import User
from giftcircle.services.dashboard import collect_upcoming_gifts


PASSWORD = "SecurePass123!"


def _register(client: TestClient, name: str = "Test User", birthday: str | None = None) -> dict:
    email = f"user-{uuid4().hex}@example.com"
    payload = {"email": email, "password": PASSWORD, "name": name}
    if birthday:
        payload["birthday"] = birthday
    res = client.post("/auth/register", json=payload)
    assert res.status_code == 201
    return res.json()


def _in_days(days: int) -> date:
    upcoming = date.today() + timedelta(days=days)
    return date(1988, upcoming.month, upcoming.day)


class TestUpcomingGifts:
    """Reminder selection for friends' birthdays and Christmas."""

    def test_birthday_and_christmas_in_window(self):
        friend = User(id=7, email="f@example.com", name="Friend", birthday=date(1990, 12, 1))
        gifts = collect_upcoming_gifts([friend], {}, date(2026, 11, 20), 60)

        assert [(g["occasion"], g["days_until"]) for g in gifts] == [("birthday", 11), ("christmas", 35)]
        assert gifts[0]["date"] == date(2026, 12, 1)
        assert gifts[0]["friend"]["id"] == 7

    def test_outside_window(self):
        friend = User(id=7, email="f@example.com", name="Friend", birthday=date(1990, 3, 1))
        assert collect_upcoming_gifts([friend], {}, date(2026, 6, 1), 60) == []

    def test_birthday_wraps_into_next_year(self):
        friend = User(id=7, email="f@example.com", name="Friend", birthday=date(1990, 1, 5))
        gifts = collect_upcoming_gifts([friend], {}, date(2026, 12, 20), 60)
        birthday = next(g for g in gifts if g["occasion"] == "birthday")
        assert birthday["date"] == date(2027, 1, 5)
        assert birthday["days_until"] == 16

    def test_recent_claim_suppresses_reminder(self):
        friend = User(id=7, email="f@example.com", name="Friend", birthday=date(1990, 12, 1))
        claimed = {7: datetime(2026, 11, 1, tzinfo=timezone.utc)}
        assert collect_upcoming_gifts([friend], claimed, date(2026, 11, 20), 60) == []

    def test_claim_before_last_occurrence_does_not_count(self):
        friend = User(id=7, email="f@example.com", name="Friend", birthday=date(1990, 12, 1))
        stale = {7: datetime(2025, 6, 1)}
        gifts = collect_upcoming_gifts([friend], stale, date(2026, 11, 20), 60)
        assert [g["occasion"] for g in gifts] == ["birthday", "christmas"]


class TestDashboardApi:
    """GET /dashboard."""

    def test_requires_auth(self):
        assert TestClient(app).get("/dashboard").status_code == 401

    def test_dashboard_aggregates(self):
        viewer = TestClient(app)
        _register(viewer, name="Viewer")
        viewer.post("/wishlists", json={"title": "Mine"})

        friend = TestClient(app)
        friend_user = _register(friend, name="Friend", birthday=_in_days(10).isoformat())
        sent = viewer.post("/friend-requests", json={"user_id": friend_user["id"]}).json()
        friend.post(f"/friend-requests/{sent['request_id']}", json={"action": "accept"})

        soon = date.today() + timedelta(days=5)
        viewer.post("/occasions", json={"title": "Dinner", "date": soon.isoformat(), "type": "OTHER", "is_recurring": False})

        data = viewer.get("/dashboard").json()

        assert [w["title"] for w in data["wishlists"]] == ["Mine"]
        assert data["wishlists"][0]["item_count"] == 0
        birthdays = [g for g in data["upcoming_gifts"] if g["occasion"] == "birthday"]
        assert len(birthdays) == 1
        assert birthdays[0]["friend"]["id"] == friend_user["id"]
        assert birthdays[0]["days_until"] == 10
        assert [o["title"] for o in data["upcoming_occasions"]] == ["Dinner"]
        assert data["claimed_gifts"] == []

    def test_claim_removes_birthday_reminder(self):
        viewer = TestClient(app)
        _register(viewer)

        friend = TestClient(app)
        friend_user = _register(friend, birthday=_in_days(3).isoformat())
        sent = viewer.post("/friend-requests", json={"user_id": friend_user["id"]}).json()
        friend.post(f"/friend-requests/{sent['request_id']}", json={"action": "accept"})

        wishlist = friend.post("/wishlists", json={"title": "Wants", "privacy": "FRIENDS_ONLY"}).json()
        item = friend.post(f"/wishlists/{wishlist['permalink']}/items", json={"name": "Lamp"}).json()
        assert viewer.post(f"/items/{item['id']}/claim").status_code == 201

        data = viewer.get("/dashboard").json()
        assert [g for g in data["upcoming_gifts"] if g["occasion"] == "birthday"] == []
        assert [c["item"]["name"] for c in data["claimed_gifts"]] == ["Lamp"]
