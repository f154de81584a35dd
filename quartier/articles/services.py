from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4
import logging

from pydantic import ValidationError

from quartier.articles.schemas import ArticleIn, ArticleUpdate, ContentBlock
from quartier.db.backend import get_backend
from quartier.errors import InvalidInputError, NotFoundError
from quartier.realtime.events import Record
from quartier.realtime.visibility import PUBLIC_RULE, Actor, VisibilityRule, visible_records
from quartier.utils.storage import make_blob_path, validate_image

logger = logging.getLogger(__name__)

ARTICLES = "articles"
REQUIRED_MESSAGE = "Titre et image obligatoires"

# Brouillons : visibles par leur auteur seulement
PUBLISHED_RULE = VisibilityRule(type_field="published", public_types=frozenset({True}),
                                owner_fields=("author_id",))


def rule_for(actor: Actor) -> VisibilityRule:
    return PUBLIC_RULE if actor.is_admin else PUBLISHED_RULE


def _utc_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def _clean_blocks(blocks: List[ContentBlock]) -> List[Dict[str, Any]]:
    return [
        {"id": block.id or uuid4().hex[:8], "type": block.type, "content": block.content.strip()}
        for block in blocks
        if block.content.strip()
    ]


async def list_articles(actor: Actor) -> List[Record]:
    articles = await get_backend().rows.query(ARTICLES, filters={"community_id": actor.community_id}, order="date")
    return visible_records(articles, actor, rule_for(actor))


async def get_article(actor: Actor, article_id: str) -> Record:
    article = await get_backend().rows.get(ARTICLES, article_id)
    if article is None or article.get("community_id") != actor.community_id:
        raise NotFoundError("Article introuvable")
    return article


def article_payload(actor: Actor, data: Dict[str, Any]) -> Record:
    try:
        article = ArticleIn.model_validate(data)
    except ValidationError:
        raise InvalidInputError("Article invalide")
    if not article.title.strip() or not article.image:
        raise InvalidInputError(REQUIRED_MESSAGE)

    return {
        "community_id": actor.community_id,
        "author_id": actor.user_id,
        "author": actor.name,
        "title": article.title.strip(),
        "category": article.category,
        "image": article.image,
        # clé de tri : programmation éventuelle, sinon l'instant de publication
        "date": _utc_iso(article.scheduled_at or datetime.now(timezone.utc)),
        "scheduled_at": _utc_iso(article.scheduled_at) if article.scheduled_at else None,
        "blocks": _clean_blocks(article.blocks),
        "published": article.published,
    }


async def upload_image(filename: Optional[str], content_type: Optional[str], content: bytes) -> str:
    ext = validate_image(filename, content_type, len(content))
    return await get_backend().blobs.upload(content, make_blob_path("news", ext))


async def publish(payload: Record) -> Record:
    article = await get_backend().rows.insert(ARTICLES, payload)
    state = "publié" if article.get("published") else "enregistré en brouillon"
    logger.info(f"📰 Article '{article['title']}' {state} par {article.get('author')}")
    return article


async def update_article(actor: Actor, article_id: str, changes: ArticleUpdate) -> Record:
    await get_article(actor, article_id)
    patch = changes.model_dump(exclude_unset=True)

    if "title" in patch:
        patch["title"] = (patch["title"] or "").strip()
        if not patch["title"]:
            raise InvalidInputError(REQUIRED_MESSAGE)
    if "image" in patch and not patch["image"]:
        raise InvalidInputError(REQUIRED_MESSAGE)
    if "blocks" in patch:
        patch["blocks"] = _clean_blocks(changes.blocks or [])
    if "scheduled_at" in patch:
        if changes.scheduled_at is not None:
            patch["scheduled_at"] = _utc_iso(changes.scheduled_at)
            patch["date"] = patch["scheduled_at"]
    if not patch:
        raise InvalidInputError("Aucune modification fournie")

    return await get_backend().rows.update(ARTICLES, article_id, patch)


async def delete_article(actor: Actor, article_id: str) -> None:
    await get_article(actor, article_id)
    await get_backend().rows.delete(ARTICLES, article_id)
    logger.info(f"🗑️ Article {article_id} supprimé par user_id={actor.user_id}")
