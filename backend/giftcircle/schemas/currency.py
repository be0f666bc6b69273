from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class CurrencyConvertRequest(BaseModel):
    amount: float = Field(ge=0)
    from_currency: str = Field(pattern=r"^[A-Za-z]{3}$")
    to_currency: str = Field(pattern=r"^[A-Za-z]{3}$")

    @field_validator("from_currency", "to_currency")
    @classmethod
    def _code_upper(cls, value: str) -> str:
        return value.upper()


class ConversionResult(BaseModel):
    original_amount: float
    original_currency: str
    converted_amount: float
    converted_currency: str
    rate: float
    is_converted: bool


class ExchangeRatesPublic(BaseModel):
    rates: dict[str, dict[str, float]]
    currencies: list[str]
    last_updated: datetime
