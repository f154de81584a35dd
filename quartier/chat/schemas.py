from pydantic import BaseModel, field_validator
from typing import Literal, Optional


class ChannelIn(BaseModel):
    name: str
    type: Literal["PUBLIC", "PRIVATE"] = "PUBLIC"
    description: str = "Salon créé par un habitant"
    # Uniquement pour les salons privés verrouillés
    password: Optional[str] = None

    @field_validator('name')
    @classmethod
    def name_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Le nom du salon est requis")
        return v.strip()


class JoinRequest(BaseModel):
    password: Optional[str] = None


class MessageIn(BaseModel):
    content: str = ""
    reply_to_id: Optional[str] = None
    reply_to_name: Optional[str] = None
    reply_to_content: Optional[str] = None
