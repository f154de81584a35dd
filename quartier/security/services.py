"""
Alertes de sécurité : SOS et signalements.

La position d'un SOS est capturée avec un délai maximal
(``GEOLOCATION_TIMEOUT``) ; passé ce délai elle vaut "Position inconnue (…)"
et l'alerte part quand même.
"""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, List, Optional
from zoneinfo import ZoneInfo

import requests

from quartier.config import settings
from quartier.db.backend import get_backend
from quartier.errors import InvalidInputError
from quartier.realtime.events import Record
from quartier.realtime.visibility import Actor
from quartier.security.schemas import Coordinates

logger = logging.getLogger(__name__)

ALERTS = "alerts"
SOS_MESSAGE = "🚨 URGENCE VITALE - SOS DÉCLENCHÉ"

UNKNOWN_TIMEOUT = "Position inconnue (délai dépassé)"
UNKNOWN_UNSUPPORTED = "Position inconnue (GPS non supporté)"
UNKNOWN_ERROR = "Position inconnue (Erreur GPS)"


class PositionError(Exception):
    """L'appareil n'a pas pu fournir sa position."""


async def list_alerts(actor: Actor) -> List[Record]:
    return await get_backend().rows.query(ALERTS, filters={"community_id": actor.community_id}, order="created_at")


def format_coordinates(coords: Coordinates) -> str:
    # Formatage précis pour les secours
    return f"{coords.latitude:.6f}, {coords.longitude:.6f} (Précision: {round(coords.accuracy)}m)"


def _reverse_geocode(latitude: float, longitude: float) -> Optional[str]:
    response = requests.get(
        settings.GEOCODER_URL,
        params={"lat": latitude, "lon": longitude, "format": "json"},
        headers={"User-Agent": "monquartier-backend"},
        timeout=settings.GEOLOCATION_TIMEOUT,
    )
    if response.status_code != 200:
        logger.warning(f"Géocodage refusé ({response.status_code})")
        return None
    return response.json().get("display_name")


async def describe_position(coords: Coordinates) -> str:
    """Coordonnées, précédées de l'adresse quand le géocodeur répond à temps."""
    position = format_coordinates(coords)
    if not settings.GEOCODER_URL:
        return position
    try:
        address = await asyncio.wait_for(
            asyncio.to_thread(_reverse_geocode, coords.latitude, coords.longitude),
            timeout=settings.GEOLOCATION_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.warning("⏱️ Géocodage trop long, coordonnées brutes conservées")
        return position
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Géocodage impossible : {e}")
        return position
    return f"{address} - {position}" if address else position


async def resolved(coords: Optional[Coordinates]) -> Optional[Coordinates]:
    return coords


async def capture_position(source: Awaitable[Optional[Coordinates]], timeout: Optional[float] = None) -> str:
    timeout = settings.GEOLOCATION_TIMEOUT if timeout is None else timeout
    try:
        coords = await asyncio.wait_for(source, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"⏱️ Aucune position reçue en {timeout}s")
        return UNKNOWN_TIMEOUT
    except PositionError as e:
        logger.warning(f"Erreur GPS : {e}")
        return UNKNOWN_ERROR
    if coords is None:
        return UNKNOWN_UNSUPPORTED
    return await describe_position(coords)


def alert_time() -> str:
    return datetime.now(ZoneInfo(settings.TIMEZONE)).strftime("%H:%M")


def sos_payload(actor: Actor, location: str) -> Record:
    return {
        "community_id": actor.community_id,
        "type": "SOS",
        "user": actor.name,
        "user_id": actor.user_id,
        "time": alert_time(),
        "location": location,
        "message": SOS_MESSAGE,
    }


def report_payload(actor: Actor, message: str, location: str) -> Record:
    return {
        "community_id": actor.community_id,
        "type": "REPORT",
        "user": actor.name,
        "user_id": actor.user_id,
        "time": alert_time(),
        "location": (location or "").strip(),
        "message": (message or "").strip(),
    }


async def create_alert(payload: Record) -> Record:
    if payload.get("type") == "REPORT" and not (payload.get("message") and payload.get("location")):
        raise InvalidInputError("Message et lieu requis")
    alert = await get_backend().rows.insert(ALERTS, payload)
    if alert.get("type") == "SOS":
        logger.warning(f"🚨 SOS de {alert.get('user')} ({alert.get('community_id')}) : {alert.get('location')}")
    return alert
