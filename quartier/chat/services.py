from typing import Any, Dict, List, Optional
import logging

from pydantic import ValidationError

from quartier.auth import password
from quartier.chat.schemas import ChannelIn, MessageIn
from quartier.db.backend import get_backend
from quartier.errors import AuthorizationError, InvalidInputError, NotFoundError
from quartier.realtime.events import Record
from quartier.realtime.visibility import CHANNEL_RULE, Actor, visible_records

logger = logging.getLogger(__name__)

CHANNELS = "channels"
MESSAGES = "messages"
# Jamais diffusé en temps réel : les hash restent côté serveur
SECRETS = "channel_secrets"

REPLY_PREVIEW_LENGTH = 120


async def get_channel(channel_id: str) -> Record:
    channel = await get_backend().rows.get(CHANNELS, channel_id)
    if channel is None:
        raise NotFoundError("Salon introuvable")
    return channel


def can_open(channel: Record, actor: Actor) -> bool:
    return channel.get("community_id") == actor.community_id and CHANNEL_RULE.allows(channel, actor)


def posting_blocked(channel: Record, actor: Actor) -> Optional[str]:
    """Raison pour laquelle l'acteur ne peut pas écrire dans le salon, ou None"""
    if channel.get("status") == "REJECTED":
        return "Cette conversation a été refusée."
    if (channel.get("type") == "DM" and channel.get("status") == "PENDING"
            and str(channel.get("initiator_id")) != actor.user_id):
        return "Acceptez la conversation avant de répondre."
    return None


async def list_channels(actor: Actor) -> Dict[str, List[Record]]:
    channels = await get_backend().rows.query(CHANNELS, filters={"community_id": actor.community_id},
                                              order="created_at")
    visible = visible_records(channels, actor, CHANNEL_RULE)
    visible_ids = {c["id"] for c in visible}
    # Salons privés que l'on peut rejoindre : seulement leur vitrine, sans la liste des membres
    joinable = [
        {"id": c["id"], "name": c.get("name"), "description": c.get("description"),
         "is_locked": c.get("is_locked", False)}
        for c in channels
        if c.get("type") == "PRIVATE" and c["id"] not in visible_ids
    ]
    return {"channels": visible, "joinable": joinable}


async def create_channel(actor: Actor, data: ChannelIn) -> Record:
    locked = data.type == "PRIVATE" and bool(data.password)
    channel = await get_backend().rows.insert(CHANNELS, {
        "community_id": actor.community_id,
        "name": data.name,
        "type": data.type,
        "description": data.description,
        "creator_id": actor.user_id,
        "members": [actor.user_id],
        "is_locked": locked,
        "status": "ACTIVE",
    })
    if locked:
        await get_backend().rows.insert(SECRETS, {
            "channel_id": channel["id"],
            "hashed_password": password.hash_password(data.password),
        })
    logger.info(f"💬 Salon '{data.name}' ({data.type}) créé par {actor.user_id}")
    return channel


async def open_dm(actor: Actor, target_user_id: str) -> Record:
    rows = get_backend().rows
    if target_user_id == actor.user_id:
        raise InvalidInputError("Impossible de s'écrire à soi-même")
    profiles = await rows.query("profiles", filters={"user_id": target_user_id})
    if not profiles or profiles[0].get("community_id") != actor.community_id:
        raise NotFoundError("Habitant introuvable dans votre quartier")

    existing = await rows.query(CHANNELS, filters={"community_id": actor.community_id, "type": "DM"})
    for channel in existing:
        members = [str(m) for m in channel.get("members") or []]
        if actor.user_id in members and target_user_id in members:
            return channel

    return await rows.insert(CHANNELS, {
        "community_id": actor.community_id,
        "name": profiles[0].get("name") or "Message privé",
        "type": "DM",
        "members": [actor.user_id, target_user_id],
        "status": "PENDING",
        "initiator_id": actor.user_id,
        "creator_id": actor.user_id,
    })


async def join_channel(actor: Actor, channel_id: str, plain_password: Optional[str]) -> Record:
    channel = await get_channel(channel_id)
    if channel.get("community_id") != actor.community_id or channel.get("type") != "PRIVATE":
        raise NotFoundError("Salon introuvable")

    members = [str(m) for m in channel.get("members") or []]
    if actor.user_id in members:
        return channel

    if channel.get("is_locked"):
        secrets = await get_backend().rows.query(SECRETS, filters={"channel_id": channel_id})
        hashed = secrets[0].get("hashed_password") if secrets else None
        if not plain_password or not password.verify_password(plain_password, hashed):
            raise InvalidInputError("Mot de passe incorrect")

    return await get_backend().rows.update(CHANNELS, channel_id, {"members": members + [actor.user_id]})


async def decide_dm(actor: Actor, channel_id: str, accept: bool) -> Record:
    channel = await get_channel(channel_id)
    members = [str(m) for m in channel.get("members") or []]
    if channel.get("type") != "DM" or actor.user_id not in members:
        raise NotFoundError("Conversation introuvable")
    if str(channel.get("initiator_id")) == actor.user_id:
        raise InvalidInputError("Seul le destinataire peut répondre à l'invitation")
    if channel.get("status") != "PENDING":
        return channel
    status = "ACTIVE" if accept else "REJECTED"
    logger.info(f"💬 DM {channel_id} : {status} par {actor.user_id}")
    return await get_backend().rows.update(CHANNELS, channel_id, {"status": status})


async def history(channel_id: str) -> List[Record]:
    messages = await get_backend().rows.query(MESSAGES, filters={"channel_id": channel_id}, order="created_at")
    return list(reversed(messages))


def message_payload(channel_id: str, actor: Actor, data: Dict[str, Any]) -> Record:
    try:
        message = MessageIn.model_validate(data)
    except ValidationError:
        raise InvalidInputError("Message invalide")

    payload = {
        "channel_id": channel_id,
        "user_id": actor.user_id,
        "user_name": actor.name,
        "user_role": actor.role,
        "content": message.content.strip(),
    }
    if message.reply_to_id:
        payload.update({
            "reply_to_id": message.reply_to_id,
            "reply_to_name": message.reply_to_name,
            "reply_to_content": (message.reply_to_content or "")[:REPLY_PREVIEW_LENGTH],
        })
    return payload


async def send_message(payload: Record) -> Record:
    channel = await get_backend().rows.get(CHANNELS, payload["channel_id"])
    if channel is None:
        raise NotFoundError("Salon introuvable")
    if channel.get("status") == "REJECTED":
        raise AuthorizationError("Conversation refusée")
    return await get_backend().rows.insert(MESSAGES, payload)
