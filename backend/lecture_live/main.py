import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lecture_live.api.deps import get_live_registry, get_session_store
from lecture_live.api.v1.router import api_router
from lecture_live.core.config import get_settings
from lecture_live.llm.gemini_client import get_llm_status

settings = get_settings()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
for noisy in ("httpx", "google_genai", "websockets"):
    logging.getLogger(noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_session_store().ensure_schema()
    logger.info("lecture_live_started env=%s llm=%s", settings.env, settings.llm_provider)
    yield
    # Teardown save for every live lecture still open.
    await get_live_registry().shutdown()


app = FastAPI(title=settings.project_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=settings.cors_origin_list != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "env": settings.env, "llm": get_llm_status()}
