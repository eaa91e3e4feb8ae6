from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, Dict, List, Optional

from scanner_bot.cards import Card, CardField
from scanner_bot.utils.http import request_json
from scanner_bot.utils.logging import get_logger

log = get_logger(__name__)

BASE_URL = "https://api.weather.gov"
CACHE_SECONDS = 5 * 60


class WeatherError(RuntimeError):
    pass


class WeatherClient:
    """National Weather Service forecasts for one fixed location, cached briefly."""

    def __init__(
        self,
        latitude: float,
        longitude: float,
        user_agent: str,
        *,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.latitude = latitude
        self.longitude = longitude
        self.user_agent = user_agent
        self._monotonic = monotonic
        self._point: Optional[Dict[str, Any]] = None
        self._cache: Dict[str, tuple[float, Dict[str, Any]]] = {}

    def _get(self, url: str, operation: str) -> Dict[str, Any]:
        try:
            return request_json(
                "GET",
                url,
                headers={"User-Agent": self.user_agent, "Accept": "application/geo+json"},
                operation=operation,
            )
        except Exception as exc:
            log.error("weather_request_failed", extra={"extra_fields": {"operation": operation, "error": str(exc)[:200]}})
            raise WeatherError(f"Failed to get weather data: {exc}") from exc

    def get_point(self) -> Dict[str, Any]:
        if self._point is None:
            self._point = self._get(f"{BASE_URL}/points/{self.latitude},{self.longitude}", "nws_point")
            props = self._point.get("properties", {})
            log.info(
                "weather_point",
                extra={"extra_fields": {"grid": props.get("gridId"), "x": props.get("gridX"), "y": props.get("gridY")}},
            )
        return self._point

    def _forecast(self, key: str) -> Dict[str, Any]:
        now = self._monotonic()
        cached = self._cache.get(key)
        if cached and now - cached[0] < CACHE_SECONDS:
            return cached[1]
        url = self.get_point().get("properties", {}).get(key)
        if not url:
            raise WeatherError("Weather location has no forecast URL")
        data = self._get(url, f"nws_{key}")
        self._cache[key] = (now, data)
        return data

    def get_forecast(self) -> Dict[str, Any]:
        return self._forecast("forecast")

    def get_hourly_forecast(self) -> Dict[str, Any]:
        return self._forecast("forecastHourly")

    def location_name(self) -> str:
        rel = self.get_point().get("properties", {}).get("relativeLocation", {}).get("properties", {})
        city, state = rel.get("city"), rel.get("state")
        return f"{city}, {state}" if city and state else f"{self.latitude}, {self.longitude}"


def forecast_periods(forecast: Dict[str, Any], limit: int = 4) -> List[Dict[str, Any]]:
    return list(forecast.get("properties", {}).get("periods", []) or [])[:limit]


def _period_label(period: Dict[str, Any]) -> str:
    # Hourly periods carry no name, only an ISO start time.
    start = period.get("startTime") or ""
    return period.get("name") or (start[11:16] if len(start) >= 16 else "Forecast")


def forecast_card(location: str, forecast: Dict[str, Any], *, hourly: bool = False) -> Card:
    fields = [
        CardField(
            name=_period_label(p),
            value=(
                f"{p.get('temperature')}°{p.get('temperatureUnit', 'F')} · "
                f"{p.get('windSpeed', '')} {p.get('windDirection', '')}\n{p.get('shortForecast', '')}"
            ),
        )
        for p in forecast_periods(forecast, limit=6 if hourly else 4)
    ]
    title = f"🌤️ {'Hourly weather' if hourly else 'Weather'} for {location}"
    return Card(title=title, fields=fields, footer="Data from weather.gov")


__all__ = ["WeatherClient", "WeatherError", "forecast_card", "forecast_periods", "CACHE_SECONDS"]
