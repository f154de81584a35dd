from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from quartier.auth.dependencies import get_current_user
from quartier.auth.models import User
from quartier.auth.permissions import require_admin, require_god
from quartier.auth.schemas import UserOut
from quartier.db.backend import get_backend
from quartier.db.session import get_db
from quartier.errors import NotFoundError, QuartierError
from quartier.realtime.visibility import Actor
from quartier.users import schemas, services
from quartier.utils.storage import make_blob_path, validate_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])
communities_router = APIRouter(prefix="/communities", tags=["communities"])


# 📋 GET /users/members - Annuaire du quartier
@router.get("/members")
async def list_members(current_user: User = Depends(get_current_user)):
    members = await services.list_members(current_user.community_id)
    return {"members": members, "count": len(members)}


# ✏️ PUT /users/me - Mettre à jour son profil
@router.put("/me", response_model=UserOut)
async def update_me(
    updates: schemas.ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)
        return await services.update_user(db, current_user, changes)
    except (HTTPException, QuartierError):
        raise
    except Exception as e:
        logger.error(f"Erreur mise à jour profil: {e}")
        raise HTTPException(status_code=500, detail="Erreur interne du serveur")


# 📸 POST /users/me/avatar - Changer l'avatar
@router.post("/me/avatar")
async def change_avatar(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    content = await file.read()
    ext = validate_image(file.filename, file.content_type, len(content))

    url = await get_backend().blobs.upload(content, make_blob_path("avatars", ext))
    await services.update_user(db, current_user, {"avatar_url": url})

    return {"message": "Avatar mis à jour avec succès ✅", "avatar_url": url}


# ===============================
# ADMINISTRATION
# ===============================
async def _managed_user(db: AsyncSession, admin: User, user_id: int) -> User:
    target = await services.get_user(db, user_id)
    if not services.can_manage(Actor.from_user(admin), target):
        raise HTTPException(status_code=403, detail="Accès interdit (utilisateur hors de votre quartier)")
    return target


@router.put("/{user_id}/role", response_model=UserOut)
async def update_role(
    user_id: int,
    data: schemas.RoleUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if data.role == "GOD" and admin.role != "GOD":
        raise HTTPException(status_code=403, detail="Accès interdit (rôle requis)")
    target = await _managed_user(db, admin, user_id)
    logger.info(f"👮 Rôle de l'utilisateur {user_id} : {target.role} -> {data.role} (par {admin.id})")
    return await services.update_user(db, target, {"role": data.role})


@router.put("/{user_id}/status", response_model=UserOut)
async def update_status(
    user_id: int,
    data: schemas.StatusUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Impossible de modifier son propre statut")
    target = await _managed_user(db, admin, user_id)
    logger.info(f"👮 Statut de l'utilisateur {user_id} : {target.status} -> {data.status} (par {admin.id})")
    return await services.update_user(db, target, {"status": data.status})


@router.put("/{user_id}/community", response_model=UserOut)
async def move_community(
    user_id: int,
    data: schemas.CommunityAssign,
    god: User = Depends(require_god),
    db: AsyncSession = Depends(get_db),
):
    if not await get_backend().rows.get("communities", data.community_id):
        raise NotFoundError("Quartier introuvable")
    target = await services.get_user(db, user_id)
    return await services.update_user(db, target, {"community_id": data.community_id})


# ===============================
# QUARTIERS
# ===============================
@communities_router.get("")
async def list_communities():
    return await services.list_communities(active_only=True)


@communities_router.get("/all")
async def list_all_communities(god: User = Depends(require_god)):
    return await services.list_communities(active_only=False)


@communities_router.post("", status_code=201)
async def create_community(data: schemas.CommunityIn, god: User = Depends(require_god)):
    return await services.create_community(data.model_dump())


@communities_router.put("/{community_id}")
async def update_community(
    community_id: str,
    data: schemas.CommunityUpdate,
    admin: User = Depends(require_admin),
):
    if admin.role != "GOD" and admin.community_id != community_id:
        raise HTTPException(status_code=403, detail="Accès interdit (quartier d'un autre administrateur)")
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Aucune modification")
    return await services.update_community(community_id, changes)
