from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
import traceback
import time
import logging

from quartier.auth import models, schemas, password
from quartier.auth.dependencies import get_current_user, oauth2_scheme
from quartier.auth.services import auth_provider, get_user_by_identifier
from quartier.db.backend import get_backend
from quartier.db.session import get_db
from quartier.errors import NotFoundError, QuartierError

from quartier.utils.code import generate_family_code, generate_verification_code
from quartier.utils.email import send_email_async
from quartier.utils.avatar import generate_default_avatar_url

logger = logging.getLogger(__name__)

router = APIRouter()

# Stock temporaire des codes de réinitialisation
reset_codes = {}

RESET_CODE_TTL = 600  # 10 minutes
CONFLICT_MESSAGE = "Conflit de données (Email/Tél déjà utilisé)."


async def find_family_head(db: AsyncSession, code: str):
    result = await db.execute(
        select(models.User).filter(
            models.User.family_id == code,
            models.User.is_head_of_family.is_(True)
        )
    )
    return result.scalars().first()


async def _new_family_code(db: AsyncSession) -> str:
    while True:
        code = generate_family_code()
        result = await db.execute(select(models.User.id).filter(models.User.family_id == code))
        if result.first() is None:
            return code


async def _community_exists(community_id: str) -> bool:
    try:
        return await get_backend().rows.get("communities", community_id) is not None
    except NotFoundError:
        return False


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(user: schemas.UserRegister, db: AsyncSession = Depends(get_db)):
    try:
        conditions = [models.User.email == user.email]
        if user.phone:
            conditions.append(models.User.phone == user.phone)
        result = await db.execute(select(models.User).filter(or_(*conditions)))
        if result.scalars().first():
            raise HTTPException(status_code=400, detail=CONFLICT_MESSAGE)

        if user.mode == "JOIN":
            head = await find_family_head(db, user.family_code)
            if not head:
                raise HTTPException(status_code=404, detail="Aucun foyer trouvé avec ce code.")
            community_id = head.community_id
            family_id = head.family_id
        else:
            if not await _community_exists(user.community_id):
                raise HTTPException(status_code=404, detail="Quartier introuvable")
            community_id = user.community_id
            family_id = await _new_family_code(db)

        new_user = models.User(
            email=user.email,
            phone=user.phone,
            hashed_password=password.hash_password(user.password),
            full_name=user.full_name,
            community_id=community_id,
            family_id=family_id,
            is_head_of_family=user.mode == "CREATE",
            birth_date=user.birth_date,
            role="RESIDENT",
            status="VALIDATED",
            balance_status="OK",
            avatar_url=generate_default_avatar_url(user.full_name),
        )
        db.add(new_user)
        try:
            await db.commit()
        except IntegrityError:
            # inscription concurrente avec le même email ou téléphone
            await db.rollback()
            raise HTTPException(status_code=400, detail=CONFLICT_MESSAGE)
        await db.refresh(new_user)

        try:
            await get_backend().rows.insert("profiles", new_user.to_profile())
        except QuartierError as e:
            # Le compte SQL fait foi, le miroir sera réécrit à la prochaine mise à jour
            logger.error(f"⚠️ Profil non synchronisé pour user_id={new_user.id} : {e}")

        session = auth_provider.open_session(new_user)
        logger.info(f"✅ Nouveau résident id={new_user.id} ({user.mode}) dans le quartier {community_id}")

        return {
            "msg": "Utilisateur enregistré avec succès",
            "family_code": family_id,
            "access_token": session.token,
            "token_type": "bearer",
            "user": schemas.UserOut.model_validate(new_user),
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(traceback.format_exc())
        raise HTTPException(status_code=500, detail=f"Erreur interne : {str(e)}")


@router.post("/verify-family-code")
async def verify_family_code(data: schemas.FamilyCodeRequest, db: AsyncSession = Depends(get_db)):
    head = await find_family_head(db, data.code)
    if not head:
        raise HTTPException(status_code=404, detail="Aucun foyer trouvé avec ce code.")
    return {"head_name": head.full_name, "community_id": head.community_id}


@router.post("/login", response_model=schemas.TokenResponse)
async def login(user: schemas.UserLogin, db: AsyncSession = Depends(get_db)):
    try:
        session = await auth_provider.sign_in(db, user.identifier, user.password)
        db_user = await get_user_by_identifier(db, user.identifier)

        return {
            "access_token": session.token,
            "token_type": "bearer",
            "user": db_user,
        }
    except (HTTPException, QuartierError):
        raise
    except Exception as e:
        logger.error(traceback.format_exc())
        raise HTTPException(status_code=500, detail=f"Erreur interne : {str(e)}")


@router.post("/logout")
async def logout(token: str = Depends(oauth2_scheme)):
    auth_provider.sign_out(token)
    return {"msg": "Déconnecté avec succès"}


@router.post("/forgot-password")
async def forgot_password(data: schemas.ForgotPasswordRequest, db: AsyncSession = Depends(get_db)):
    try:
        db_user = await get_user_by_identifier(db, data.identifier)
        if not db_user:
            raise HTTPException(status_code=404, detail="Utilisateur non trouvé")

        cleanup_expired_codes()
        code = generate_verification_code()
        reset_codes[data.identifier] = {
            "code": code,
            "expires": time.time() + RESET_CODE_TTL,
            "verified": False
        }

        if '@' in data.identifier:
            subject = "Réinitialisation de mot de passe"
            body = f"Voici votre code de réinitialisation : {code}\nIl expire dans 10 minutes."
            await send_email_async(subject, data.identifier, body)
        else:
            logger.info(f"[SMS] Code pour {data.identifier} : {code}")

        return {"msg": "Code de réinitialisation envoyé"}

    except HTTPException:
        raise
    except Exception:
        logger.error(traceback.format_exc())
        raise HTTPException(status_code=500, detail="Erreur interne")


def _find_code(code: str):
    for identifier, entry in reset_codes.items():
        if entry["code"] == code:
            return identifier, entry
    return None, None


@router.post("/verify-code")
async def verify_code(data: schemas.VerifyCodeRequest):
    identifier, entry = _find_code(data.code)
    if not identifier:
        raise HTTPException(status_code=400, detail="Code invalide")

    if time.time() > entry["expires"]:
        reset_codes.pop(identifier, None)
        raise HTTPException(status_code=400, detail="Code expiré")

    entry["verified"] = True
    return {"msg": "Code vérifié avec succès", "identifier": identifier}


@router.post("/reset-password")
async def reset_password(data: schemas.ResetPasswordRequest, db: AsyncSession = Depends(get_db)):
    try:
        identifier, entry = _find_code(data.code)
        if not identifier or not entry.get("verified", False):
            raise HTTPException(status_code=400, detail="Aucun code vérifié trouvé. Veuillez d'abord vérifier votre code.")

        if time.time() > entry["expires"]:
            reset_codes.pop(identifier, None)
            raise HTTPException(status_code=400, detail="Code expiré")

        db_user = await get_user_by_identifier(db, identifier)
        if not db_user:
            raise HTTPException(status_code=404, detail="Utilisateur non trouvé")

        db_user.hashed_password = password.hash_password(data.new_password)
        await db.commit()

        reset_codes.pop(identifier, None)
        return {"msg": "Mot de passe réinitialisé avec succès"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(traceback.format_exc())
        raise HTTPException(status_code=500, detail=f"Erreur interne : {str(e)}")


def cleanup_expired_codes() -> int:
    current_time = time.time()
    expired_keys = [identifier for identifier, entry in reset_codes.items() if current_time > entry["expires"]]
    for key in expired_keys:
        reset_codes.pop(key, None)
    return len(expired_keys)


@router.get("/me")
async def get_me(current_user: models.User = Depends(get_current_user)):
    profiles = await get_backend().rows.query("profiles", filters={"user_id": str(current_user.id)})
    return {
        "user": schemas.UserOut.model_validate(current_user),
        "profile": profiles[0] if profiles else None,
    }
