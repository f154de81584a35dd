import logging
import secrets
import time
from pathlib import Path

import aiofiles

from quartier.errors import InvalidInputError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}
MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB


def validate_image(filename: str, content_type: str, size: int) -> str:
    """Valide une image uploadée et retourne son extension"""
    if not filename:
        raise InvalidInputError("Nom de fichier manquant")

    ext = filename.split('.')[-1].lower() if '.' in filename else ''
    if ext not in ALLOWED_EXTENSIONS:
        raise InvalidInputError(
            f"Extension non autorisée. Extensions autorisées: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    if not content_type or not content_type.startswith('image/'):
        raise InvalidInputError("Le fichier doit être une image")
    if size > MAX_FILE_SIZE:
        raise InvalidInputError("Fichier trop volumineux")
    return ext


def make_blob_path(folder: str, extension: str) -> str:
    """Chemin unique : <dossier>/<aléatoire>_<timestamp>.<ext>"""
    return f"{folder}/{secrets.token_hex(6)}_{int(time.time() * 1000)}.{extension}"


class LocalBlobStore:
    """Stockage des images dans static/upload, servi par FastAPI"""

    def __init__(self, base_dir: str, url_prefix: str):
        self.base_dir = Path(base_dir)
        self.url_prefix = url_prefix.rstrip('/')

    async def upload(self, data: bytes, path: str) -> str:
        target = (self.base_dir / path).resolve()
        if self.base_dir.resolve() not in target.parents:
            raise InvalidInputError("Chemin de fichier invalide")

        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, "wb") as f:
            await f.write(data)

        logger.info(f"Image enregistrée : {target}")
        return f"{self.url_prefix}/{path}"
