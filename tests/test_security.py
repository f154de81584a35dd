"""Tests des alertes SOS et des signalements."""
import asyncio
import re
import time

import pytest
import requests

from quartier.config import settings
from quartier.security import services
from quartier.security.schemas import Coordinates

ABIDJAN = {"latitude": 5.3456789, "longitude": -4.0123456, "accuracy": 12.4}


class TestPosition:
    def test_format_coordinates(self):
        assert services.format_coordinates(Coordinates(**ABIDJAN)) == "5.345679, -4.012346 (Précision: 12m)"

    async def test_timeout_gives_unknown_position(self):
        never = asyncio.get_running_loop().create_future()
        assert await services.capture_position(never, timeout=0.01) == services.UNKNOWN_TIMEOUT

    async def test_unsupported_gps(self):
        assert await services.capture_position(services.resolved(None)) == services.UNKNOWN_UNSUPPORTED

    async def test_gps_error(self):
        async def failing():
            raise services.PositionError("permission refusée")

        assert await services.capture_position(failing()) == services.UNKNOWN_ERROR

    async def test_geocoder_address_is_prepended(self, monkeypatch):
        monkeypatch.setattr(settings, "GEOCODER_URL", "http://geocoder.test/reverse")
        monkeypatch.setattr(services, "_reverse_geocode", lambda lat, lng: "Rue des Jardins, Cocody")

        position = await services.capture_position(services.resolved(Coordinates(**ABIDJAN)))

        assert position == "Rue des Jardins, Cocody - 5.345679, -4.012346 (Précision: 12m)"

    async def test_geocoder_failure_keeps_coordinates(self, monkeypatch):
        def unreachable(lat, lng):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr(settings, "GEOCODER_URL", "http://geocoder.test/reverse")
        monkeypatch.setattr(services, "_reverse_geocode", unreachable)

        position = await services.describe_position(Coordinates(**ABIDJAN))

        assert position == "5.345679, -4.012346 (Précision: 12m)"

    async def test_slow_geocoder_keeps_coordinates(self, monkeypatch):
        def slow(lat, lng):
            time.sleep(0.2)
            return "trop tard"

        monkeypatch.setattr(settings, "GEOCODER_URL", "http://geocoder.test/reverse")
        monkeypatch.setattr(settings, "GEOLOCATION_TIMEOUT", 0.02)
        monkeypatch.setattr(services, "_reverse_geocode", slow)

        position = await services.describe_position(Coordinates(**ABIDJAN))

        assert position == "5.345679, -4.012346 (Précision: 12m)"

    def test_alert_time_format(self):
        assert re.fullmatch(r"\d{2}:\d{2}", services.alert_time())


class TestAlertsApi:
    async def test_sos_with_coordinates(self, client, resident, auth_headers):
        response = await client.post("/security/sos", headers=auth_headers, json={"coords": ABIDJAN})

        assert response.status_code == 201
        alert = response.json()
        assert alert["type"] == "SOS"
        assert alert["message"] == services.SOS_MESSAGE
        assert alert["location"] == "5.345679, -4.012346 (Précision: 12m)"
        assert alert["user"] == "Awa Koné"
        assert alert["community_id"] == resident.community_id

    async def test_sos_without_gps_still_goes_out(self, client, auth_headers):
        response = await client.post("/security/sos", headers=auth_headers, json={})

        assert response.status_code == 201
        assert response.json()["location"] == "Position inconnue (GPS non supporté)"

    async def test_report(self, client, auth_headers):
        response = await client.post("/security/reports", headers=auth_headers, json={
            "message": " Lampadaire cassé ", "location": "Carrefour pharmacie",
        })

        assert response.status_code == 201
        assert response.json()["type"] == "REPORT"
        assert response.json()["message"] == "Lampadaire cassé"

    @pytest.mark.parametrize("payload", [
        {"message": "", "location": "Carrefour"},
        {"message": "Vol de moto", "location": "   "},
    ])
    async def test_report_requires_message_and_location(self, client, auth_headers, backend, payload):
        response = await client.post("/security/reports", headers=auth_headers, json=payload)

        assert response.status_code == 422
        assert await backend.rows.query("alerts") == []

    async def test_alerts_newest_first(self, client, auth_headers, backend, resident):
        for at in ("2024-05-01T08:00:00", "2024-05-01T21:30:00"):
            await backend.rows.insert("alerts", {"community_id": resident.community_id, "type": "REPORT",
                                                 "message": at, "location": "x", "created_at": at})

        alerts = (await client.get("/security/alerts", headers=auth_headers)).json()

        assert [a["message"] for a in alerts] == ["2024-05-01T21:30:00", "2024-05-01T08:00:00"]

    async def test_invalid_coordinates(self, client, auth_headers):
        response = await client.post("/security/sos", headers=auth_headers,
                                     json={"coords": {"latitude": 123, "longitude": 0}})
        assert response.status_code == 422
