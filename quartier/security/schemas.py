from pydantic import BaseModel, Field, field_validator
from typing import Optional


class Coordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: float = Field(default=0, ge=0)


class SosIn(BaseModel):
    # Absent : GPS non supporté par l'appareil
    coords: Optional[Coordinates] = None


class ReportIn(BaseModel):
    message: str
    location: str

    @field_validator('message', 'location')
    @classmethod
    def not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Message et lieu requis")
        return v.strip()
