"""
Tests for occasion date math and the occasions API.
"""
from datetime import date, timedelta
from uuid import uuid4

from fastapi.testclient import TestClient

from giftcircle.main import app
from giftcircle.services.occasions import (
    add_months,
    anniversary_in,
    calculate_age,
    calculate_next_occurrence,
)


PASSWORD = "SecurePass123!"


def _register(client: TestClient) -> dict:
    email = f"user-{uuid4().hex}@example.com"
    res = client.post("/auth/register", json={"email": email, "password": PASSWORD, "name": "Test User"})
    assert res.status_code == 201
    return res.json()


def test_anniversary_leap_day_falls_back():
    assert anniversary_in(date(2000, 2, 29), 2023) == date(2023, 2, 28)
    assert anniversary_in(date(2000, 2, 29), 2024) == date(2024, 2, 29)


def test_add_months_clamps_day():
    assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)


def test_next_occurrence_recurring():
    today = date(2026, 6, 1)
    assert calculate_next_occurrence(date(1990, 7, 4), True, today) == date(2026, 7, 4)
    assert calculate_next_occurrence(date(1990, 3, 4), True, today) == date(2027, 3, 4)
    assert calculate_next_occurrence(date(1990, 6, 1), True, today) == today


def test_next_occurrence_one_off():
    today = date(2026, 6, 1)
    assert calculate_next_occurrence(date(2026, 8, 1), False, today) == date(2026, 8, 1)
    assert calculate_next_occurrence(date(2026, 5, 1), False, today) is None


def test_calculate_age():
    assert calculate_age(date(1990, 7, 4), 1990, date(2026, 7, 4)) == 36
    assert calculate_age(date(1990, 7, 4), 1990, date(2026, 7, 3)) == 35
    assert calculate_age(date(1990, 7, 4), None, date(2026, 7, 4)) is None


class TestOccasionApi:
    """CRUD and upcoming listing for a user's occasions."""

    def test_create_and_list(self):
        client = TestClient(app)
        user = _register(client)

        res = client.post(
            "/occasions",
            json={"title": "Mum's birthday", "date": "1960-04-12", "type": "BIRTHDAY", "start_year": 1960},
        )

        assert res.status_code == 201
        data = res.json()
        assert data["owner_id"] == user["id"]
        assert data["is_recurring"] is True
        assert data["next_occurrence"] is not None
        assert data["age"] is not None
        assert [o["id"] for o in client.get("/occasions").json()] == [data["id"]]

    def test_blank_title(self):
        client = TestClient(app)
        _register(client)
        res = client.post("/occasions", json={"title": "  ", "date": "2026-01-01", "type": "OTHER"})
        assert res.status_code == 400
        assert res.json()["detail"] == "Title is required"

    def test_invalid_start_year(self):
        client = TestClient(app)
        _register(client)
        future_year = date.today().year + 1
        res = client.post(
            "/occasions",
            json={"title": "Kid", "date": "2020-01-01", "type": "BIRTHDAY", "start_year": future_year},
        )
        assert res.status_code == 400
        assert res.json()["detail"] == "Invalid start year"

    def test_entity_pair_required(self):
        client = TestClient(app)
        _register(client)
        res = client.post(
            "/occasions",
            json={"title": "Party", "date": "2026-01-01", "type": "OTHER", "entity_type": "WISHLIST"},
        )
        assert res.status_code == 422

    def test_upcoming(self):
        client = TestClient(app)
        _register(client)
        soon = date.today() + timedelta(days=10)
        later = date.today() + timedelta(days=200)
        past = date.today() - timedelta(days=10)
        client.post("/occasions", json={"title": "Soon", "date": soon.isoformat(), "type": "OTHER", "is_recurring": False})
        client.post("/occasions", json={"title": "Later", "date": later.isoformat(), "type": "OTHER", "is_recurring": False})
        client.post("/occasions", json={"title": "Past", "date": past.isoformat(), "type": "OTHER", "is_recurring": False})

        upcoming = client.get("/occasions/upcoming", params={"months": 2}).json()
        assert [o["title"] for o in upcoming] == ["Soon"]
        flagged = client.get("/occasions", params={"upcoming": True, "months": 2}).json()
        assert [o["title"] for o in flagged] == ["Soon"]

    def test_update_and_delete(self):
        client = TestClient(app)
        _register(client)
        created = client.post("/occasions", json={"title": "Old", "date": "2026-01-01", "type": "OTHER"}).json()

        res = client.put(f"/occasions/{created['id']}", json={"title": "New", "date": "2026-02-02", "type": "WEDDING"})
        assert res.status_code == 200
        assert res.json()["title"] == "New"
        assert res.json()["date"] == "2026-02-02"
        assert res.json()["type"] == "WEDDING"

        assert client.delete(f"/occasions/{created['id']}").status_code == 204
        assert client.get(f"/occasions/{created['id']}").status_code == 404

    def test_other_users_occasion_not_found(self):
        owner = TestClient(app)
        _register(owner)
        created = owner.post("/occasions", json={"title": "Mine", "date": "2026-01-01", "type": "OTHER"}).json()

        other = TestClient(app)
        _register(other)
        assert other.get(f"/occasions/{created['id']}").status_code == 404
        assert other.delete(f"/occasions/{created['id']}").status_code == 404

    def test_requires_auth(self):
        assert TestClient(app).get("/occasions").status_code == 401
