from typing import Optional, Tuple
from fastapi import Depends, HTTPException, Query, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
import logging

from quartier.auth.models import User
from quartier.auth.services import auth_provider
from quartier.db.session import get_db
from quartier.realtime.visibility import Actor

# Initialiser le logger
logger = logging.getLogger(__name__)

# Utilisé pour extraire le token depuis le header Authorization
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def _load_user(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalars().first()


# 🔒 Récupération obligatoire de l'utilisateur PostgreSQL
async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    🔐 Récupère l'utilisateur courant à partir du token JWT.
    """
    session = auth_provider.get_session(token)
    if session is None:
        logger.warning("⛔ Token invalide, expiré ou révoqué")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token invalide ou expiré",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await _load_user(db, session.user_id)
    if not user:
        logger.warning(f"❌ Utilisateur introuvable : id={session.user_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Utilisateur non trouvé",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if user.is_banned:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Ce compte a été suspendu"
        )

    return user


def get_actor(user: User = Depends(get_current_user)) -> Actor:
    return Actor.from_user(user)


# 🔌 Authentification des WebSockets : le token passe en query string
async def get_websocket_user(
    token: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
) -> Optional[Tuple[User, str]]:
    session = auth_provider.get_session(token)
    if session is None:
        return None
    user = await _load_user(db, session.user_id)
    if not user or user.is_banned:
        return None
    return user, token
