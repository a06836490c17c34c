import logging

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import InvalidRequest
from .models import TransactionRequest, AIGuardResponse
from .pipeline import GuardPipeline
from .settings import Settings

# ------------------------------------------------------------------
#  Configuration
# ------------------------------------------------------------------
load_dotenv()
settings = Settings.from_env()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Transaction Guard", version="1.0.0")

# ------------------------------------------------------------------
#  Core Pipeline
# ------------------------------------------------------------------
pipeline = GuardPipeline.from_settings(settings)
logger.info("pipeline ready: %s", pipeline.configured_sources())

# ------------------------------------------------------------------
#  Error Handlers
# ------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(InvalidRequest)
async def invalid_request(request: Request, exc: InvalidRequest):
    return JSONResponse(status_code=400, content={"detail": str(exc)})

# ------------------------------------------------------------------
#  API Routes
# ------------------------------------------------------------------
@app.get("/health")
def health():
    return {"ok": True, "sources": pipeline.configured_sources()}


@app.get("/heuristics")
def get_heuristics():
    return pipeline.scorer.weights.to_dict()


@app.post("/api/ai-guard", response_model=AIGuardResponse, response_model_by_alias=True)
async def ai_guard(tx: TransactionRequest):
    """
    Score a transaction before it is signed.

    Blocking is reported in ``overall.action``; the HTTP status stays 200
    for every verdict.
    """
    return await pipeline.analyze(tx)
