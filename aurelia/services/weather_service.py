"""Current weather for a destination (OpenWeatherMap geocoding + current conditions)."""

import logging
from typing import Any

import httpx
from fastapi import HTTPException, status

from aurelia.core.config import settings

logger = logging.getLogger("aurelia.weather")


class WeatherService:
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport

    async def current(self, city: str, units: str = "metric") -> dict[str, Any]:
        """
        Raises:
            HTTPException: 503 without an API key, 404 for an unknown city,
                502 when OpenWeatherMap fails.
        """
        if not settings.OPENWEATHER_API_KEY:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Weather service not configured")

        try:
            async with httpx.AsyncClient(
                base_url=settings.OPENWEATHER_API_URL,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
                transport=self.transport,
            ) as client:
                geo = await client.get(
                    "/geo/1.0/direct",
                    params={"q": city, "limit": 1, "appid": settings.OPENWEATHER_API_KEY},
                )
                geo.raise_for_status()
                places = geo.json()
                if not places:
                    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"City not found: {city}")
                place = places[0]

                weather = await client.get(
                    "/data/2.5/weather",
                    params={
                        "lat": place["lat"],
                        "lon": place["lon"],
                        "units": units,
                        "appid": settings.OPENWEATHER_API_KEY,
                    },
                )
                weather.raise_for_status()
                data = weather.json()
        except httpx.HTTPError as e:
            logger.error("OpenWeatherMap request for %s failed: %s", city, e)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Weather service unavailable")

        conditions = (data.get("weather") or [{}])[0]
        main = data.get("main") or {}
        return {
            "city": place.get("name", city),
            "country": place.get("country"),
            "lat": place["lat"],
            "lon": place["lon"],
            "temperature": main.get("temp"),
            "feels_like": main.get("feels_like"),
            "humidity": main.get("humidity"),
            "description": conditions.get("description"),
            "icon": conditions.get("icon"),
            "wind_speed": (data.get("wind") or {}).get("speed"),
            "units": units,
        }


# Global instance
weather_service = WeatherService()
