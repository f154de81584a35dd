from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional

JobStatus = Literal["OPEN", "IN_PROGRESS", "COMPLETED", "PAID"]


class JobIn(BaseModel):
    title: str
    date: str
    pay: float = Field(ge=0)
    spots: int = Field(default=1, ge=1)
    image_before: Optional[str] = None

    @field_validator('title')
    @classmethod
    def title_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Le titre est requis")
        return v.strip()


class JobStatusUpdate(BaseModel):
    status: JobStatus
    image_after: Optional[str] = None
