from pydantic import BaseModel, field_validator
from typing import Literal, Optional

VoteChoice = Literal["FOR", "AGAINST", "ABSTAIN"]

# Compteur incrémenté par chaque choix
VOTE_FIELDS = {
    "FOR": "votes_for",
    "AGAINST": "votes_against",
    "ABSTAIN": "votes_abstain",
}


class ProposalIn(BaseModel):
    title: str
    description: str = ""
    deadline: Optional[str] = None

    @field_validator('title')
    @classmethod
    def title_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Le titre est requis")
        return v.strip()


class VoteIn(BaseModel):
    choice: VoteChoice
