from typing import Any, Dict, List
import logging

from quartier.db.backend import get_backend
from quartier.errors import ConflictError, InvalidInputError, NotFoundError
from quartier.jobs.schemas import JobIn
from quartier.realtime.events import Record
from quartier.realtime.visibility import Actor

logger = logging.getLogger(__name__)

JOBS = "jobs"
APPLICATIONS = "job_applications"


async def list_jobs(actor: Actor) -> List[Record]:
    return await get_backend().rows.query(JOBS, filters={"community_id": actor.community_id}, order="created_at")


async def get_job(actor: Actor, job_id: str) -> Record:
    job = await get_backend().rows.get(JOBS, job_id)
    if job is None or job.get("community_id") != actor.community_id:
        raise NotFoundError("Mission introuvable")
    return job


async def create_job(actor: Actor, data: JobIn) -> Record:
    job = await get_backend().rows.insert(JOBS, {
        "community_id": actor.community_id,
        **data.model_dump(),
        "spots_filled": 0,
        "status": "OPEN",
    })
    logger.info(f"🛠️ Mission '{data.title}' publiée ({data.spots} place(s))")
    return job


async def update_status(actor: Actor, job_id: str, changes: Dict[str, Any]) -> Record:
    await get_job(actor, job_id)
    return await get_backend().rows.update(JOBS, job_id, changes)


async def my_applications(actor: Actor) -> List[str]:
    applications = await get_backend().rows.query(APPLICATIONS, filters={"user_id": actor.user_id})
    return [a["job_id"] for a in applications]


async def apply(actor: Actor, job_id: str) -> Record:
    """Candidature unique par (mission, habitant), dans la limite des places."""
    job = await get_job(actor, job_id)
    if job.get("status") != "OPEN":
        raise InvalidInputError("Cette mission n'accepte plus de candidatures.")
    if (job.get("spots_filled") or 0) >= (job.get("spots") or 0):
        raise ConflictError("Plus aucune place disponible.")

    rows = get_backend().rows
    try:
        application = await rows.insert(APPLICATIONS, {"job_id": job_id, "user_id": actor.user_id,
                                                      "user_name": actor.name})
    except ConflictError:
        raise ConflictError("Déjà postulé.")

    # la place n'est prise que si le compteur est encore sous la limite au moment de l'écriture
    has_room = {"spots_filled": {"$lt": job.get("spots") or 0}}
    updated = await rows.increment(JOBS, job_id, "spots_filled", guard=has_room)
    if updated is None:
        await rows.delete(APPLICATIONS, application["id"])
        logger.info(f"Mission {job_id} complète, candidature de user_id={actor.user_id} annulée")
        raise ConflictError("Plus aucune place disponible.")
    return updated
