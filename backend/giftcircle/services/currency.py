"""Exchange rates cached in the database.

Rates come from an exchangerate-api style endpoint (``GET <url>/<BASE>``
answering ``{"rates": {"EUR": 0.92, ...}}``). A cached pair is reused while it
is younger than ``exchange_rate_cache_hours``. When the provider is unreachable
the last stored rate is used, and a pair that was never stored converts 1:1.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.core.config import settings
from giftcircle.models.models import ExchangeRate, utcnow


logger = logging.getLogger("giftcircle.currency")

SUPPORTED_CURRENCIES = ("USD", "EUR", "GBP", "CAD", "AUD", "JPY", "NZD")


class ExchangeRateError(Exception):
    """The rate provider could not answer."""


async def fetch_rates(base: str) -> dict[str, float]:
    """All rates the provider publishes for ``base``."""
    url = f"{settings.exchange_rate_api_url.rstrip('/')}/{base}"
    try:
        async with httpx.AsyncClient(timeout=settings.exchange_rate_timeout_seconds) as client:
            response = await client.get(url)
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise ExchangeRateError(f"Rate request for {base} failed: {exc}") from exc

    rates = data.get("rates") if isinstance(data, dict) else None
    if not isinstance(rates, dict):
        raise ExchangeRateError(f"Rate response for {base} has no rates")
    return {
        str(code).upper(): float(value)
        for code, value in rates.items()
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    }


def _fresh_since(now: datetime) -> datetime:
    return now - timedelta(hours=settings.exchange_rate_cache_hours)


async def _stored_rates(
    db: AsyncSession,
    from_currencies: Iterable[str],
    to_currencies: Iterable[str],
    fresh_since: datetime | None = None,
) -> dict[tuple[str, str], float]:
    stmt = select(ExchangeRate).where(
        ExchangeRate.from_currency.in_(list(from_currencies)),
        ExchangeRate.to_currency.in_(list(to_currencies)),
    )
    if fresh_since is not None:
        stmt = stmt.where(ExchangeRate.updated_at >= fresh_since)
    result = await db.execute(stmt)
    return {(row.from_currency, row.to_currency): float(row.rate) for row in result.scalars()}


async def _store_rates(
    db: AsyncSession,
    base: str,
    rates: dict[str, float],
    targets: Iterable[str],
    now: datetime,
) -> None:
    wanted = {code: rates[code] for code in set(targets) if code != base and code in rates}
    if not wanted:
        return

    result = await db.execute(
        select(ExchangeRate).where(
            ExchangeRate.from_currency == base,
            ExchangeRate.to_currency.in_(list(wanted)),
        )
    )
    existing = {row.to_currency: row for row in result.scalars()}
    for code, rate in wanted.items():
        row = existing.get(code)
        if row is None:
            db.add(ExchangeRate(from_currency=base, to_currency=code, rate=rate, updated_at=now))
        else:
            row.rate = rate
            row.updated_at = now
    await db.flush()


async def get_exchange_rate(
    db: AsyncSession,
    from_currency: str,
    to_currency: str,
    now: datetime | None = None,
) -> float:
    if from_currency == to_currency:
        return 1.0
    now = now or utcnow()
    pair = (from_currency, to_currency)

    fresh = await _stored_rates(db, [from_currency], [to_currency], _fresh_since(now))
    if pair in fresh:
        return fresh[pair]

    try:
        rates = await fetch_rates(from_currency)
    except ExchangeRateError:
        logger.warning("Exchange rate fetch failed from=%s to=%s", from_currency, to_currency, exc_info=True)
        rates = {}
    if to_currency in rates:
        await _store_rates(db, from_currency, rates, {*SUPPORTED_CURRENCIES, to_currency}, now)
        return rates[to_currency]

    stale = await _stored_rates(db, [from_currency], [to_currency])
    if pair in stale:
        logger.warning("Using stale exchange rate from=%s to=%s", from_currency, to_currency)
        return stale[pair]

    logger.warning("No exchange rate from=%s to=%s, using 1:1", from_currency, to_currency)
    return 1.0


async def convert_price(
    db: AsyncSession,
    amount: float,
    from_currency: str,
    to_currency: str,
) -> dict[str, Any]:
    rate = await get_exchange_rate(db, from_currency, to_currency)
    return {
        "original_amount": amount,
        "original_currency": from_currency,
        "converted_amount": round(amount * rate, 2),
        "converted_currency": to_currency,
        "rate": rate,
        "is_converted": from_currency != to_currency,
    }


async def get_all_exchange_rates(
    db: AsyncSession,
    currencies: Iterable[str] = SUPPORTED_CURRENCIES,
    now: datetime | None = None,
) -> dict[str, dict[str, float]]:
    """Full ``rates[from][to]`` table; one provider call per base with missing pairs."""
    now = now or utcnow()
    codes = list(dict.fromkeys(currencies))
    table = {base: {code: 1.0 for code in codes} for base in codes}

    fresh = await _stored_rates(db, codes, codes, _fresh_since(now))
    stale: dict[tuple[str, str], float] | None = None
    for base in codes:
        missing = []
        for code in codes:
            if code == base:
                continue
            if (base, code) in fresh:
                table[base][code] = fresh[(base, code)]
            else:
                missing.append(code)
        if not missing:
            continue

        try:
            rates = await fetch_rates(base)
        except ExchangeRateError:
            logger.warning("Exchange rate fetch failed base=%s missing=%s", base, missing, exc_info=True)
            if stale is None:
                stale = await _stored_rates(db, codes, codes)
            for code in missing:
                if (base, code) in stale:
                    table[base][code] = stale[(base, code)]
            continue

        await _store_rates(db, base, rates, codes, now)
        for code in missing:
            if code in rates:
                table[base][code] = rates[code]
    return table
