"""
Fournisseur d'authentification : sessions JWT, liste noire des tokens
révoqués et notification des changements de session (les surfaces temps
réel d'une session se ferment à la déconnexion).
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from quartier.auth import jwt_handler, password
from quartier.auth.models import User
from quartier.errors import AuthenticationError

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

SessionCallback = Callable[[str, Optional["Session"]], None]


@dataclass(frozen=True)
class Session:
    token: str
    user_id: int
    role: str
    community_id: Optional[str] = None


async def get_user_by_identifier(db: AsyncSession, identifier: str) -> Optional[User]:
    """Récupère un utilisateur par email ou téléphone"""
    result = await db.execute(
        select(User).filter(
            or_(
                User.email == identifier,
                User.phone == identifier
            )
        )
    )
    return result.scalars().first()


class AuthProvider:
    def __init__(self):
        # Blacklist en mémoire pour tokens invalidés (logout)
        self._blacklist: Set[str] = set()
        self._listeners: List[SessionCallback] = []

    def open_session(self, user: User) -> Session:
        token = jwt_handler.create_access_token({
            "user_id": user.id,
            "role": user.role,
            "community_id": user.community_id,
        })
        session = Session(token=token, user_id=user.id, role=user.role, community_id=user.community_id)
        self._emit(SIGNED_IN, session)
        return session

    async def sign_in(self, db: AsyncSession, identifier: str, plain_password: str) -> Session:
        user = await get_user_by_identifier(db, identifier)
        if not user or not password.verify_password(plain_password, user.hashed_password):
            raise AuthenticationError("Invalid login credentials")
        if user.is_banned:
            logger.warning(f"⛔ Connexion refusée, compte banni : id={user.id}")
            raise AuthenticationError("Ce compte a été suspendu. Contactez l'administrateur.")
        return self.open_session(user)

    def get_session(self, token: Optional[str]) -> Optional[Session]:
        if not token or token in self._blacklist:
            return None
        payload = jwt_handler.decode_access_token(token)
        if payload is None:
            return None
        try:
            user_id = int(payload.get("user_id"))
        except (ValueError, TypeError):
            logger.warning(f"⚠️ Champ 'user_id' mal formé dans token : {payload.get('user_id')}")
            return None
        return Session(token=token, user_id=user_id, role=payload.get("role", "RESIDENT"),
                       community_id=payload.get("community_id"))

    def sign_out(self, token: str) -> None:
        session = self.get_session(token)
        self._blacklist.add(token)
        if session is not None:
            self._emit(SIGNED_OUT, session)

    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def _emit(self, event: str, session: Optional[Session]) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, session)
            except Exception as e:
                logger.error(f"Listener de session en erreur ({event}) : {e}")


auth_provider = AuthProvider()
