from typing import Any, Dict, List, Optional
import logging

from pydantic import ValidationError

from quartier.db.backend import get_backend
from quartier.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from quartier.marketplace.schemas import ClassifiedIn
from quartier.realtime.events import Record
from quartier.realtime.visibility import Actor
from quartier.utils.storage import make_blob_path, validate_image

logger = logging.getLogger(__name__)

CLASSIFIEDS = "classifieds"
REQUIRED_FIELDS = ("title", "description")


async def list_classifieds(actor: Actor) -> List[Record]:
    return await get_backend().rows.query(CLASSIFIEDS, filters={"community_id": actor.community_id},
                                          order="created_at")


def classified_payload(actor: Actor, data: Dict[str, Any]) -> Record:
    try:
        ad = ClassifiedIn.model_validate(data)
    except ValidationError:
        raise InvalidInputError("Annonce invalide")
    return {
        "community_id": actor.community_id,
        "user_id": actor.user_id,
        "user_name": actor.name,
        "type": ad.type,
        "title": ad.title.strip(),
        "description": ad.description.strip(),
        # GIVE : toujours gratuit
        "price": None if ad.type == "GIVE" else ad.price,
        "image": ad.image,
        "date": "À l'instant",
    }


async def upload_image(filename: Optional[str], content_type: Optional[str], content: bytes) -> str:
    ext = validate_image(filename, content_type, len(content))
    return await get_backend().blobs.upload(content, make_blob_path("classifieds", ext))


async def publish(payload: Record) -> Record:
    for field in REQUIRED_FIELDS:
        if not payload.get(field):
            raise InvalidInputError("Titre et description requis")
    ad = await get_backend().rows.insert(CLASSIFIEDS, payload)
    logger.info(f"🛒 Annonce '{ad['title']}' publiée par {ad.get('user_id')}")
    return ad


async def delete(actor: Actor, classified_id: str) -> None:
    rows = get_backend().rows
    ad = await rows.get(CLASSIFIEDS, classified_id)
    if ad is None or ad.get("community_id") != actor.community_id:
        raise NotFoundError("Annonce introuvable")
    if ad.get("user_id") != actor.user_id and not actor.is_admin:
        raise PermissionDeniedError("Seul l'auteur ou un administrateur peut retirer cette annonce")
    await rows.delete(CLASSIFIEDS, classified_id)
