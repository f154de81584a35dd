from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func

from quartier.db.session import Base

ROLES = ("RESIDENT", "ADMIN", "GOD")
STATUSES = ("PENDING", "VALIDATED", "BANNED")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    phone = Column(String, unique=True, nullable=True, index=True)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String, nullable=False)

    # Identifiant du quartier dans le store de documents
    community_id = Column(String, nullable=True, index=True)
    # Code famille FAM-XXXXXX partagé par le foyer
    family_id = Column(String, nullable=True, index=True)
    is_head_of_family = Column(Boolean, default=False, nullable=False)
    birth_date = Column(String, nullable=True)

    role = Column(String, default="RESIDENT", nullable=False)
    status = Column(String, default="VALIDATED", nullable=False)
    balance_status = Column(String, default="OK", nullable=False)
    avatar_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"

    @property
    def is_banned(self) -> bool:
        return self.status == "BANNED"

    def to_profile(self) -> dict:
        """Copie publique de l'utilisateur, miroir du document ``profiles``"""
        return {
            "user_id": str(self.id),
            "email": self.email,
            "name": self.full_name,
            "phone": self.phone,
            "community_id": self.community_id,
            "family_id": self.family_id,
            "is_head_of_family": self.is_head_of_family,
            "birth_date": self.birth_date,
            "role": self.role,
            "status": self.status,
            "balance_status": self.balance_status,
            "avatar": self.avatar_url,
        }
