"""Currency conversion through the Frankfurter exchange-rate API (no key required)."""

import logging
from typing import Any

import httpx
from fastapi import HTTPException, status

from aurelia.core.config import settings

logger = logging.getLogger("aurelia.currency")


class CurrencyService:
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport

    async def convert(self, amount: float, from_currency: str, to_currency: str) -> dict[str, Any]:
        """
        Raises:
            HTTPException: 400 for a non-positive amount or unsupported
                currency, 502 when the rate API fails.
        """
        if amount <= 0:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Amount must be positive")
        source, target = from_currency.upper(), to_currency.upper()
        if source == target:
            return {"amount": amount, "from": source, "to": target, "rate": 1.0, "result": amount, "date": None}

        try:
            async with httpx.AsyncClient(
                base_url=settings.CURRENCY_API_URL,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
                transport=self.transport,
            ) as client:
                response = await client.get("/latest", params={"amount": amount, "from": source, "to": target})
        except httpx.HTTPError as e:
            logger.error("Currency API request failed: %s", e)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Currency service unavailable")

        if response.status_code == status.HTTP_404_NOT_FOUND:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported currency")
        if response.is_error:
            logger.error("Currency API returned %s", response.status_code)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Currency service unavailable")

        data = response.json()
        converted = (data.get("rates") or {}).get(target)
        if converted is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported currency")
        return {
            "amount": amount,
            "from": source,
            "to": target,
            "rate": round(converted / amount, 6),
            "result": converted,
            "date": data.get("date"),
        }


# Global instance
currency_service = CurrencyService()
