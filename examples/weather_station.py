"""Weather station listener.

Subscribes to ``station/+/sensor/+/telemetry`` and logs every reading.

Run with:
    MQTT_URL=mqtt://broker.hivemq.com:1883 python examples/weather_station.py
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from pydantic import BaseModel

from mqttroute import RouterSettings, RouteService, RouteTable
from mqttroute.runtime.logging import configure_logging

logger = logging.getLogger("weather_station")

routes = RouteTable()


class SensorTelemetry(BaseModel):
    sensorId: str
    sensorName: str
    stationId: str
    timestamp: datetime
    temperature: float
    humidity: float
    pressure: float
    lightLevel: int
    status: str


@routes.route("station/+/sensor/{sensorId}/telemetry")
async def handle_telemetry(sensorId: str, data: SensorTelemetry | None) -> None:
    if data is None:
        logger.warning("telemetry.unreadable", extra={"sensor": sensorId})
        return
    logger.info(
        "telemetry",
        extra={
            "sensor": sensorId,
            "temperature": data.temperature,
            "humidity": data.humidity,
            "pressure": data.pressure,
        },
    )


@routes.route("station/{stationId}/status")
def handle_status(stationId: str, payload: str) -> None:
    logger.info("station.status", extra={"station": stationId, "status": payload})


async def main() -> None:
    settings = RouterSettings.from_env()
    configure_logging(settings.log_level)
    service = RouteService(settings, routes)
    try:
        await service.run()
    finally:
        await service.stop()


if __name__ == "__main__":
    asyncio.run(main())
