import logging
from typing import Any

from fastapi import APIRouter, Request

from giftcircle.api.deps import DbSessionDep
from giftcircle.core.config import settings
from giftcircle.core.rate_limit import check_rate_limit
from giftcircle.models.models import utcnow
from giftcircle.schemas.currency import ConversionResult, CurrencyConvertRequest, ExchangeRatesPublic
from giftcircle.services.currency import SUPPORTED_CURRENCIES, convert_price, get_all_exchange_rates


router = APIRouter(prefix="/currency", tags=["currency"])
logger = logging.getLogger("giftcircle.currency")


@router.post("/convert", response_model=ConversionResult)
async def convert_currency(
    payload: CurrencyConvertRequest,
    request: Request,
    db: DbSessionDep,
) -> dict[str, Any]:
    check_rate_limit(
        request,
        max_requests=settings.rate_limit_search_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    result = await convert_price(db, payload.amount, payload.from_currency, payload.to_currency)
    await db.commit()
    logger.info(
        "Currency converted from=%s to=%s rate=%s",
        payload.from_currency,
        payload.to_currency,
        result["rate"],
    )
    return result


@router.get("/rates", response_model=ExchangeRatesPublic)
async def list_exchange_rates(db: DbSessionDep) -> dict[str, Any]:
    rates = await get_all_exchange_rates(db)
    await db.commit()
    return {
        "rates": rates,
        "currencies": list(SUPPORTED_CURRENCIES),
        "last_updated": utcnow(),
    }
