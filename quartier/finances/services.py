from datetime import date
from typing import Dict, List
import logging

from quartier.db.backend import get_backend
from quartier.finances.schemas import CampaignIn, Summary, TransactionIn
from quartier.realtime.events import Record
from quartier.realtime.visibility import Actor

logger = logging.getLogger(__name__)

TRANSACTIONS = "transactions"
CAMPAIGNS = "campaigns"


async def list_transactions(actor: Actor) -> List[Record]:
    return await get_backend().rows.query(TRANSACTIONS, filters={"community_id": actor.community_id}, order="date")


async def create_transaction(actor: Actor, data: TransactionIn) -> Record:
    payload = data.model_dump()
    payload["date"] = payload["date"] or date.today().isoformat()
    transaction = await get_backend().rows.insert(TRANSACTIONS, {
        "community_id": actor.community_id,
        **payload,
        "created_by": actor.user_id,
    })
    logger.info(f"💰 {data.type} {data.amount} '{data.label}' enregistrée par {actor.user_id}")
    return transaction


def summarize(transactions: List[Record]) -> Summary:
    income = sum(float(t.get("amount") or 0) for t in transactions if t.get("type") == "INCOME")
    expense = sum(float(t.get("amount") or 0) for t in transactions if t.get("type") == "EXPENSE")
    return Summary(income=income, expense=expense, balance=income - expense)


async def list_campaigns(actor: Actor) -> Dict[str, List[Record]]:
    """Campagnes en cours (objectif non atteint) et historique (objectif atteint)"""
    campaigns = await get_backend().rows.query(CAMPAIGNS, filters={"community_id": actor.community_id},
                                               order="deadline")
    active = [c for c in campaigns if (c.get("collected_amount") or 0) < (c.get("target_amount") or 0)]
    history = [c for c in campaigns if (c.get("collected_amount") or 0) >= (c.get("target_amount") or 0)]
    return {"active": active, "history": history}


async def create_campaign(actor: Actor, data: CampaignIn) -> Record:
    return await get_backend().rows.insert(CAMPAIGNS, {"community_id": actor.community_id, **data.model_dump()})
