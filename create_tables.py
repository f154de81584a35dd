import asyncio
import logging

from quartier.db.session import Base, engine

# IMPORTER LES MODULES DE MODÈLES pour enregistrer les tables dans metadata
import quartier.auth.models  # noqa: F401

logger = logging.getLogger(__name__)


async def create_all():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Tables SQL créées : {', '.join(Base.metadata.tables)}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(create_all())
