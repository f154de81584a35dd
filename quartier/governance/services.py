from typing import Dict, List
import logging

from quartier.db.backend import get_backend
from quartier.errors import ConflictError, InvalidInputError, NotFoundError
from quartier.governance.schemas import VOTE_FIELDS, ProposalIn
from quartier.realtime.events import Record
from quartier.realtime.visibility import Actor

logger = logging.getLogger(__name__)

PROPOSALS = "proposals"
VOTES = "votes"


async def list_proposals(actor: Actor) -> List[Record]:
    return await get_backend().rows.query(PROPOSALS, filters={"community_id": actor.community_id},
                                          order="created_at")


async def get_proposal(actor: Actor, proposal_id: str) -> Record:
    proposal = await get_backend().rows.get(PROPOSALS, proposal_id)
    if proposal is None or proposal.get("community_id") != actor.community_id:
        raise NotFoundError("Proposition introuvable")
    return proposal


async def create_proposal(actor: Actor, data: ProposalIn) -> Record:
    proposal = await get_backend().rows.insert(PROPOSALS, {
        "community_id": actor.community_id,
        "title": data.title,
        "description": data.description,
        "deadline": data.deadline,
        "status": "OPEN",
        "votes_for": 0,
        "votes_against": 0,
        "votes_abstain": 0,
        "created_by": actor.user_id,
    })
    logger.info(f"🗳️ Proposition '{data.title}' ouverte dans le quartier {actor.community_id}")
    return proposal


async def close_proposal(actor: Actor, proposal_id: str) -> Record:
    await get_proposal(actor, proposal_id)
    return await get_backend().rows.update(PROPOSALS, proposal_id, {"status": "CLOSED"})


async def my_votes(actor: Actor) -> Dict[str, str]:
    votes = await get_backend().rows.query(VOTES, filters={"user_id": actor.user_id})
    return {v["proposal_id"]: v["vote_type"] for v in votes}


async def cast_vote(actor: Actor, proposal_id: str, choice: str) -> Record:
    """Enregistre le vote puis incrémente le compteur de la proposition.

    Un seul vote par (proposition, habitant) : l'index unique du store fait foi.
    """
    if choice not in VOTE_FIELDS:
        raise InvalidInputError("Choix de vote invalide")
    proposal = await get_proposal(actor, proposal_id)
    if proposal.get("status") != "OPEN":
        raise InvalidInputError("Le vote est clos.")

    rows = get_backend().rows
    try:
        await rows.insert(VOTES, {"proposal_id": proposal_id, "user_id": actor.user_id, "vote_type": choice})
    except ConflictError:
        raise ConflictError("Vous avez déjà voté.")

    updated = await rows.increment(PROPOSALS, proposal_id, VOTE_FIELDS[choice])
    if updated is None:
        raise NotFoundError("Proposition introuvable")
    return updated
