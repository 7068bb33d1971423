from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pathlib import Path
import logging
import sys

# Add parent directory to path to allow importing backend and quarry
sys.path.append(str(Path(__file__).resolve().parents[2]))

from backend.core.config import settings
from backend.api.routers import lca_router
from backend.api.routers.lca import init_lca

from quarry.material_match import __version__

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown."""
    # Startup: fails the lookup endpoint (503) if the catalog is not configured
    init_lca()
    logger.info("Quarry LCA service started")

    yield  # Application runs here

    logger.info("Quarry LCA service stopped")


app = FastAPI(title="Quarry LCA Service", version=__version__, lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(lca_router)


@app.get("/api/health")
def health_check():
    return {"status": "ok", "version": __version__}
