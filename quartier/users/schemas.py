from pydantic import BaseModel, field_validator
from typing import Literal, Optional


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    birth_date: Optional[str] = None

    @field_validator('full_name')
    @classmethod
    def name_not_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Le nom ne peut pas être vide")
        return v.strip() if v else v


class RoleUpdate(BaseModel):
    role: Literal["RESIDENT", "ADMIN", "GOD"]


class StatusUpdate(BaseModel):
    status: Literal["PENDING", "VALIDATED", "BANNED"]


class CommunityAssign(BaseModel):
    community_id: str


class CommunityIn(BaseModel):
    name: str
    city: str
    theme_color: str = "#059669"
    is_active: bool = True


class CommunityUpdate(BaseModel):
    name: Optional[str] = None
    city: Optional[str] = None
    theme_color: Optional[str] = None
    is_active: Optional[bool] = None
