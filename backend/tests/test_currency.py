"""
Tests for exchange rates, their cache and the /currency endpoints.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from giftcircle.main import app
from giftcircle.models.models import ExchangeRate
from giftcircle.services import currency
from giftcircle.services.currency import (
    ExchangeRateError,
    convert_price,
    fetch_rates,
    get_all_exchange_rates,
    get_exchange_rate,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeProvider:
    def __init__(self, tables: dict[str, dict[str, float]] | None = None, fail: bool = False) -> None:
        self.tables = tables or {}
        self.fail = fail
        self.calls: list[str] = []

    async def __call__(self, base: str) -> dict[str, float]:
        self.calls.append(base)
        if self.fail:
            raise ExchangeRateError("provider down")
        return self.tables.get(base, {})


async def _store(session_factory, from_currency: str, to_currency: str, rate: float, updated_at: datetime) -> None:
    async with session_factory() as db:
        db.add(ExchangeRate(from_currency=from_currency, to_currency=to_currency, rate=rate, updated_at=updated_at))
        await db.commit()


class TestExchangeRates:
    """Cached lookups and their fallbacks."""

    async def test_same_currency(self, session_factory, monkeypatch):
        provider = FakeProvider()
        monkeypatch.setattr(currency, "fetch_rates", provider)
        async with session_factory() as db:
            assert await get_exchange_rate(db, "USD", "USD", now=NOW) == 1.0
        assert provider.calls == []

    async def test_fetch_stores_rates(self, session_factory, monkeypatch):
        provider = FakeProvider({"USD": {"EUR": 0.9, "GBP": 0.8, "XYZ": 5.0}})
        monkeypatch.setattr(currency, "fetch_rates", provider)

        async with session_factory() as db:
            assert await get_exchange_rate(db, "USD", "EUR", now=NOW) == 0.9
            await db.commit()

        async with session_factory() as db:
            rows = (await db.execute(select(ExchangeRate).where(ExchangeRate.from_currency == "USD"))).scalars().all()
            assert {row.to_currency: row.rate for row in rows} == {"EUR": pytest.approx(0.9), "GBP": pytest.approx(0.8)}

    async def test_fresh_cache_skips_provider(self, session_factory, monkeypatch):
        await _store(session_factory, "USD", "EUR", 0.91, NOW - timedelta(hours=1))
        provider = FakeProvider({"USD": {"EUR": 0.5}})
        monkeypatch.setattr(currency, "fetch_rates", provider)

        async with session_factory() as db:
            assert await get_exchange_rate(db, "USD", "EUR", now=NOW) == pytest.approx(0.91)
        assert provider.calls == []

    async def test_expired_cache_refreshed(self, session_factory, monkeypatch):
        await _store(session_factory, "USD", "EUR", 0.91, NOW - timedelta(hours=48))
        provider = FakeProvider({"USD": {"EUR": 0.95}})
        monkeypatch.setattr(currency, "fetch_rates", provider)

        async with session_factory() as db:
            assert await get_exchange_rate(db, "USD", "EUR", now=NOW) == 0.95
            await db.commit()
        assert provider.calls == ["USD"]

        async with session_factory() as db:
            row = (await db.execute(select(ExchangeRate))).scalar_one()
            assert row.rate == pytest.approx(0.95)

    async def test_stale_rate_when_provider_fails(self, session_factory, monkeypatch):
        await _store(session_factory, "USD", "EUR", 0.91, NOW - timedelta(hours=48))
        monkeypatch.setattr(currency, "fetch_rates", FakeProvider(fail=True))

        async with session_factory() as db:
            assert await get_exchange_rate(db, "USD", "EUR", now=NOW) == pytest.approx(0.91)

    async def test_unknown_pair_converts_one_to_one(self, session_factory, monkeypatch):
        monkeypatch.setattr(currency, "fetch_rates", FakeProvider(fail=True))
        async with session_factory() as db:
            assert await get_exchange_rate(db, "USD", "JPY", now=NOW) == 1.0

    async def test_convert_price(self, session_factory, monkeypatch):
        monkeypatch.setattr(currency, "fetch_rates", FakeProvider({"EUR": {"USD": 1.0857}}))
        async with session_factory() as db:
            result = await convert_price(db, 20.0, "EUR", "USD")

        assert result == {
            "original_amount": 20.0,
            "original_currency": "EUR",
            "converted_amount": 21.71,
            "converted_currency": "USD",
            "rate": 1.0857,
            "is_converted": True,
        }

    async def test_rate_table_one_fetch_per_base(self, session_factory, monkeypatch):
        await _store(session_factory, "USD", "EUR", 0.9, NOW - timedelta(hours=1))
        provider = FakeProvider({"EUR": {"USD": 1.1, "GBP": 0.85}, "GBP": {"USD": 1.25, "EUR": 1.17}})
        monkeypatch.setattr(currency, "fetch_rates", provider)

        async with session_factory() as db:
            table = await get_all_exchange_rates(db, ("USD", "EUR", "GBP"), now=NOW)

        assert sorted(provider.calls) == ["EUR", "GBP", "USD"]
        assert table["USD"]["USD"] == 1.0
        assert table["USD"]["EUR"] == pytest.approx(0.9)
        assert table["USD"]["GBP"] == 1.0
        assert table["EUR"] == {"USD": 1.1, "EUR": 1.0, "GBP": 0.85}
        assert table["GBP"]["EUR"] == 1.17

    async def test_rate_table_uses_stale_rows(self, session_factory, monkeypatch):
        await _store(session_factory, "EUR", "USD", 1.05, NOW - timedelta(days=7))
        monkeypatch.setattr(currency, "fetch_rates", FakeProvider(fail=True))

        async with session_factory() as db:
            table = await get_all_exchange_rates(db, ("USD", "EUR"), now=NOW)

        assert table["EUR"]["USD"] == pytest.approx(1.05)
        assert table["USD"]["EUR"] == 1.0


def _mock_client(response: MagicMock | None = None, error: Exception | None = None) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.__aenter__.return_value = mock_client
    mock_client.__aexit__.return_value = None
    if error is not None:
        mock_client.get.side_effect = error
    else:
        mock_client.get.return_value = response
    return mock_client


def _mock_response(payload: object) -> MagicMock:
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


class TestFetchRates:
    """The HTTP call to the rate provider."""

    async def test_success(self):
        payload = {"base": "USD", "rates": {"eur": 0.92, "GBP": 0.79, "JPY": 150, "BAD": "x", "FLAG": True}}
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = _mock_client(_mock_response(payload))
            mock_client_class.return_value = mock_client

            rates = await fetch_rates("USD")

            assert rates == {"EUR": 0.92, "GBP": 0.79, "JPY": 150.0}
            assert mock_client.get.call_args[0][0].endswith("/USD")

    async def test_network_error(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client_class.return_value = _mock_client(error=httpx.ConnectError("refused"))

            with pytest.raises(ExchangeRateError):
                await fetch_rates("USD")

    async def test_http_error_status(self):
        response = _mock_response({})
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "Server error",
            request=MagicMock(),
            response=MagicMock(status_code=503),
        )
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client_class.return_value = _mock_client(response)

            with pytest.raises(ExchangeRateError):
                await fetch_rates("USD")

    async def test_missing_rates(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client_class.return_value = _mock_client(_mock_response({"error": "unsupported"}))

            with pytest.raises(ExchangeRateError, match="no rates"):
                await fetch_rates("ZZZ")


class TestCurrencyEndpoints:
    """POST /currency/convert and GET /currency/rates."""

    def test_convert(self, monkeypatch):
        monkeypatch.setattr(currency, "fetch_rates", FakeProvider({"USD": {"EUR": 0.5}}))
        res = TestClient(app).post(
            "/currency/convert",
            json={"amount": 10, "from_currency": "usd", "to_currency": "eur"},
        )

        assert res.status_code == 200
        assert res.json() == {
            "original_amount": 10.0,
            "original_currency": "USD",
            "converted_amount": 5.0,
            "converted_currency": "EUR",
            "rate": 0.5,
            "is_converted": True,
        }

    def test_convert_same_currency(self, monkeypatch):
        provider = FakeProvider()
        monkeypatch.setattr(currency, "fetch_rates", provider)
        res = TestClient(app).post(
            "/currency/convert",
            json={"amount": 12.5, "from_currency": "GBP", "to_currency": "GBP"},
        )

        assert res.status_code == 200
        assert res.json()["converted_amount"] == 12.5
        assert res.json()["is_converted"] is False
        assert provider.calls == []

    @pytest.mark.parametrize(
        "payload",
        [
            {"amount": -1, "from_currency": "USD", "to_currency": "EUR"},
            {"amount": 1, "from_currency": "US", "to_currency": "EUR"},
            {"amount": 1, "from_currency": "USD", "to_currency": "E1R"},
            {"amount": 1, "from_currency": "USD"},
        ],
    )
    def test_convert_validation(self, payload):
        assert TestClient(app).post("/currency/convert", json=payload).status_code == 422

    def test_rates(self, monkeypatch):
        monkeypatch.setattr(currency, "fetch_rates", FakeProvider({"USD": {"EUR": 0.9}}))
        res = TestClient(app).get("/currency/rates")

        assert res.status_code == 200
        data = res.json()
        assert data["currencies"] == list(currency.SUPPORTED_CURRENCIES)
        assert data["rates"]["USD"]["EUR"] == 0.9
        assert data["rates"]["EUR"]["EUR"] == 1.0
        assert set(data["rates"]) == set(currency.SUPPORTED_CURRENCIES)
        assert data["last_updated"]
