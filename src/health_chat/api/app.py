"""
Relay Application Module

HTTP relay between the mobile client and the remote language model. The
client never holds the model API key; it posts a chat message or a set of
health metrics here and gets back one generated reply.

Endpoints:
- POST /chat     {message}                    -> {response}
- POST /predict  {age, weight, bp, heartRate} -> {diabetes_risk, hypertension_risk, advice}
- GET  /health   liveness and API key presence
- GET  /metrics  Prometheus metrics

Failures are returned as ``{"error": "..."}`` with a non-2xx status.
"""

import time
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CollectorRegistry, Counter, generate_latest
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog import get_logger

from ..config import get_settings
from ..domain.errors import GatewayError, MalformedReplyError
from ..domain.models import HealthMetrics, Message, RiskPrediction, Sender
from ..services.gateway import InferenceGateway
from ..services.llm import GeminiGateway
from .rate_limiter import RateLimiter, RateLimitExceeded, client_key

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

REQUESTS = Counter("requests_total", "Total requests by endpoint", ["endpoint"], registry=CUSTOM_REGISTRY)
ERRORS = Counter("errors_total", "Total errors by endpoint", ["endpoint"], registry=CUSTOM_REGISTRY)
PROCESSING_TIME = Counter(
    "processing_time_seconds", "Total processing time by endpoint", ["endpoint"], registry=CUSTOM_REGISTRY
)

logger = get_logger()


class ChatRequest(BaseModel):
    message: Optional[str] = None


class ChatResponse(BaseModel):
    response: str


@lru_cache(maxsize=1)
def get_gateway() -> InferenceGateway:
    """Returns the language model gateway"""
    settings = get_settings()
    return GeminiGateway(
        api_key=settings.gemini_api_key,
        model_name=settings.gemini_model,
        advice_language=settings.advice_language,
    )


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Logs configuration at startup and stops background tasks at shutdown"""
    settings = get_settings()
    logger.info("relay_startup", llm_key_configured=settings.llm_key_configured, model=settings.gemini_model)
    await app.state.rate_limiter.start()

    yield

    await app.state.rate_limiter.stop()
    logger.info("relay_shutdown_complete")


app = FastAPI(
    title="Health Chat Relay",
    description="Relay between the health assistant client and the language model",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.rate_limiter = RateLimiter(
    rate_limit=get_settings().rate_limit,
    time_window=get_settings().rate_limit_window,
)

# Enable cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Set up request tracing
FastAPIInstrumentor.instrument_app(app)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    """Tracks requests and enforces rate limits"""
    endpoint = request.url.path
    started = time.perf_counter()
    REQUESTS.labels(endpoint=endpoint).inc()
    logger.info("request_started", path=endpoint)
    try:
        await request.app.state.rate_limiter.check_rate_limit(client_key(request))
    except RateLimitExceeded as e:
        ERRORS.labels(endpoint=endpoint).inc()
        response = error_response(429, str(e))
        response.headers["Retry-After"] = str(e.retry_after)
        return response

    response = await call_next(request)
    elapsed = time.perf_counter() - started
    PROCESSING_TIME.labels(endpoint=endpoint).inc(elapsed)
    if response.status_code >= 400:
        ERRORS.labels(endpoint=endpoint).inc()
    logger.info("request_finished", path=endpoint, status_code=response.status_code, elapsed=round(elapsed, 4))
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    missing = [".".join(str(part) for part in err["loc"][1:]) for err in exc.errors()]
    logger.warning("request_invalid", path=request.url.path, fields=missing)
    return error_response(400, f"Invalid request: {', '.join(missing) or 'body'}")


@app.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    gateway: InferenceGateway = Depends(get_gateway),
) -> ChatResponse:
    """Relays one user message to the model and returns its reply"""
    if not body.message or not body.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    try:
        reply = await gateway.chat([Message.create(Sender.USER, body.message)])
    except GatewayError as e:
        logger.error("chat_relay_error", error=str(e))
        raise HTTPException(status_code=500, detail="Chatbot response failed")

    logger.info("chat_relayed", message_length=len(body.message), reply_length=len(reply))
    return ChatResponse(response=reply)


@app.post("/predict", response_model=RiskPrediction)
async def predict(
    metrics: HealthMetrics,
    gateway: InferenceGateway = Depends(get_gateway),
) -> RiskPrediction:
    """Returns diabetes and hypertension risk estimates with advice"""
    try:
        return await gateway.predict_risk(metrics)
    except MalformedReplyError as e:
        logger.error("prediction_reply_unparseable", error=str(e))
        raise HTTPException(status_code=500, detail="Prediction failed")
    except GatewayError as e:
        logger.error("prediction_relay_error", error=str(e))
        raise HTTPException(status_code=500, detail="Prediction failed")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "llm_key_configured": get_settings().llm_key_configured}


@app.get("/metrics")
async def metrics():
    """Provides Prometheus metrics for system monitoring"""
    return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")
