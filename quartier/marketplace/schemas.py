from pydantic import BaseModel, Field
from typing import Literal, Optional

ClassifiedType = Literal["SELL", "BUY", "GIVE", "SERVICE"]


class ClassifiedIn(BaseModel):
    type: ClassifiedType = "SELL"
    title: str = ""
    description: str = ""
    price: Optional[float] = Field(default=None, ge=0)
    image: Optional[str] = None
