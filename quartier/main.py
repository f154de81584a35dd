import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from quartier.articles.api import router as articles_router, ws_router as articles_ws_router
from quartier.auth.api import router as auth_router
from quartier.chat.api import router as chat_router, ws_router as chat_ws_router
from quartier.config import settings
from quartier.db.backend import get_backend, init_backend
from quartier.errors import QuartierError, translate_error
from quartier.finances.api import router as finances_router, ws_router as finances_ws_router
from quartier.governance.api import router as governance_router, ws_router as governance_ws_router
from quartier.jobs.api import router as jobs_router, ws_router as jobs_ws_router
from quartier.marketplace.api import router as marketplace_router, ws_router as marketplace_ws_router
from quartier.security.api import router as security_router, ws_router as security_ws_router
from quartier.users.api import communities_router, router as users_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    backend = init_backend()
    ensure_indexes = getattr(backend.rows, "ensure_indexes", None)
    if ensure_indexes is not None:
        try:
            await ensure_indexes()
        except QuartierError as e:
            logger.error(f"⚠️ Index uniques non créés : {e}")
    if backend.status.banner:
        logger.warning(f"Démarrage en mode dégradé : {backend.status.banner}")
    yield


app = FastAPI(title="Mon Quartier", lifespan=lifespan)

# Création dossier statique uploads
upload_dir = Path(settings.UPLOAD_DIR)
upload_dir.mkdir(parents=True, exist_ok=True)

# Monture des fichiers statiques
app.mount(settings.UPLOAD_URL_PREFIX, StaticFiles(directory=upload_dir), name="uploads")

# Ajout des routers avec préfixes
app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(users_router)
app.include_router(communities_router)
app.include_router(chat_router)
app.include_router(chat_ws_router)
app.include_router(governance_router)
app.include_router(governance_ws_router)
app.include_router(jobs_router)
app.include_router(jobs_ws_router)
app.include_router(marketplace_router)
app.include_router(marketplace_ws_router)
app.include_router(security_router)
app.include_router(security_ws_router)
app.include_router(finances_router)
app.include_router(finances_ws_router)
app.include_router(articles_router)
app.include_router(articles_ws_router)

# Middleware CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # à restreindre en prod
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QuartierError)
async def quartier_error_handler(request: Request, exc: QuartierError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} : {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": translate_error(exc)})


# Barrière anti-crash : aucune erreur inattendue ne laisse le client sans réponse
@app.exception_handler(Exception)
async def crash_barrier(request: Request, exc: Exception):
    logger.exception(f"💥 Erreur inattendue sur {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Une erreur inattendue est survenue.",
            "actions": ["reload", "home"],
        },
    )


@app.get("/")
async def root():
    return {"message": "Bienvenue sur l'API Mon Quartier !"}


@app.get("/health")
async def health():
    backend = get_backend()
    banner = backend.status.banner
    return {
        "status": "degraded" if banner else "ok",
        "online": backend.is_online(),
        "banner": banner,
    }
