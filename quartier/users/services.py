from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from quartier.auth.models import User
from quartier.db.backend import get_backend
from quartier.errors import NotFoundError
from quartier.realtime.events import Record
from quartier.realtime.visibility import Actor

logger = logging.getLogger(__name__)


async def sync_profile(user: User) -> Record:
    """Réécrit le document ``profiles`` à partir de l'utilisateur SQL"""
    rows = get_backend().rows
    existing = await rows.query("profiles", filters={"user_id": str(user.id)})
    if existing:
        return await rows.update("profiles", existing[0]["id"], user.to_profile())
    return await rows.insert("profiles", user.to_profile())


async def list_members(community_id: Optional[str]) -> List[Record]:
    members = await get_backend().rows.query("profiles", filters={"community_id": community_id})
    return sorted(members, key=lambda m: (m.get("family_id") or "", m.get("name") or ""))


async def get_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalars().first()
    if not user:
        raise NotFoundError("Utilisateur introuvable")
    return user


async def update_user(db: AsyncSession, user: User, changes: Dict[str, Any]) -> User:
    for key, value in changes.items():
        setattr(user, key, value)
    await db.commit()
    await db.refresh(user)
    await sync_profile(user)
    return user


def can_manage(actor: Actor, target: User) -> bool:
    """Un ADMIN ne gère que son quartier ; GOD gère tout"""
    if actor.role == "GOD":
        return True
    return target.community_id == actor.community_id and target.role != "GOD"


# ===============================
# QUARTIERS
# ===============================
async def list_communities(active_only: bool = True) -> List[Record]:
    rows = await get_backend().rows.query("communities", order="created_at")
    if active_only:
        rows = [c for c in rows if c.get("is_active", True)]
    return rows


async def create_community(data: Dict[str, Any]) -> Record:
    community = await get_backend().rows.insert("communities", data)
    logger.info(f"🏘️ Quartier créé : {community['name']} ({community['id']})")
    return community


async def update_community(community_id: str, changes: Dict[str, Any]) -> Record:
    return await get_backend().rows.update("communities", community_id, changes)
