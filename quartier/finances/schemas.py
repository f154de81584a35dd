from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional


class TransactionIn(BaseModel):
    label: str
    amount: float = Field(gt=0)
    type: Literal["INCOME", "EXPENSE"] = "EXPENSE"
    # AAAA-MM-JJ, aujourd'hui par défaut
    date: Optional[str] = None
    proof_url: Optional[str] = None

    @field_validator('label')
    @classmethod
    def label_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Le libellé est requis")
        return v.strip()


class CampaignIn(BaseModel):
    title: str
    description: str = ""
    target_amount: float = Field(gt=0)
    collected_amount: float = Field(default=0, ge=0)
    deadline: str


class Summary(BaseModel):
    income: float
    expense: float
    balance: float
