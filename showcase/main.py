import os
import time
import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from supabase import create_client

load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

from . import metrics
from .billing import billing_router
from .gemini import GeminiClient
from .veo import VeoClient
from .pipeline import GenerationService, project_router, user_router
from .pipeline.credits import CreditLedger
from .pipeline.project_service import ProjectStore
from .pipeline.storage import ObjectStorage


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Showcase service starting up...")
    metrics.set_gauge("start_time", time.time())

    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
    if not url or not key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

    http = httpx.AsyncClient(timeout=60)
    supabase = create_client(url, key)
    storage = ObjectStorage.from_env(http=http)
    ledger = CreditLedger(supabase)
    projects = ProjectStore(supabase)

    app.state.http = http
    app.state.supabase = supabase
    app.state.ledger = ledger
    app.state.service = GenerationService(
        ledger=ledger,
        projects=projects,
        storage=storage,
        gemini=GeminiClient(http),
        veo=VeoClient(http),
    )

    yield

    logger.info("Showcase service shutting down...")
    await http.aclose()


app = FastAPI(lifespan=lifespan)

app.include_router(project_router)
app.include_router(user_router)
app.include_router(billing_router)


@app.get("/health")
def health_check():
    """Verify the service is running and env vars are configured."""
    gemini_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
    return {
        "status": "ok",
        "gemini_api_key_set": bool(gemini_key),
        "supabase_url_set": bool(os.environ.get("SUPABASE_URL")),
        "r2_configured": bool(os.environ.get("R2_ACCOUNT_ID")),
        "billing_webhook_secret_set": bool(os.environ.get("BILLING_WEBHOOK_SECRET")),
    }


@app.get("/metrics")
def metrics_endpoint():
    """Return a snapshot of all service metrics."""
    return metrics.get_snapshot()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("showcase.main:app", host="0.0.0.0", port=port)
