"""
Narrative Gateway - FastAPI service

AI-assisted narrative generation for youth case management:
  - Gemini (default) or any OpenAI-compatible model writes report prose
  - Daily usage ledger and response cache sit in front of the model
  - Failures come back classified with `fallback: true` so callers can
    substitute locally generated text
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from .case_notes import EndpointKind
from .config import GatewaySettings
from .errors import INVALID_REQUEST
from .gateway import NarrativeGateway
from .models import (
    AnalyzeBehaviorRequest,
    AnalyzeIncidentRequest,
    AnalyzeNoteRequest,
    BehavioralInsightsRequest,
    CategorizeIncidentRequest,
    EnhanceReportRequest,
    HealthResponse,
    QueryRequest,
    SummarizeNoteRequest,
    SummarizeReportRequest,
    TreatmentRecommendationsRequest,
)
from .structured_logging import get_request_id, log_request, set_request_id, setup_logging
from .usage_ledger import client_ip, client_key_for

logger = logging.getLogger(__name__)

QUIET_PATHS = {"/health", "/docs", "/openapi.json"}


def _gateway(request: Request) -> NarrativeGateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        # Served without lifespan (e.g. a bare TestClient); build on first use
        gateway = NarrativeGateway.from_settings(request.app.state.settings)
        request.app.state.gateway = gateway
    return gateway


def create_app(
    gateway: Optional[NarrativeGateway] = None,
    settings: Optional[GatewaySettings] = None,
) -> FastAPI:
    """Build the FastAPI app. Tests pass a prebuilt gateway."""
    if settings is None:
        settings = gateway.settings if gateway is not None else GatewaySettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, use_json=settings.log_json)
        logger.info("Starting Narrative Gateway...")
        if app.state.gateway is None:
            app.state.gateway = NarrativeGateway.from_settings(settings)
        logger.info(f"Ready to serve requests (models: {app.state.gateway.selector.to_dict()})")
        yield
        logger.info("Shutting down...")
        await app.state.gateway.aclose()

    app = FastAPI(
        title="Narrative Gateway",
        description="AI-assisted case narrative generation with quotas, caching and offline fallback",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.gateway = gateway

    # CORS for the case-management front end
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """Request ID tracking and access logging."""
        start_time = time.time()
        request_id = set_request_id(request.headers.get("X-Request-ID"))

        response = await call_next(request)

        if request.url.path not in QUIET_PATHS:
            log_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=(time.time() - start_time) * 1000,
                client_ip=client_ip(request),
            )
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = "; ".join(str(err.get("msg", "")) for err in exc.errors())
        logger.warning(f"Rejected {request.url.path}: {messages}")
        return JSONResponse(
            status_code=400,
            content={
                "error": messages or "Invalid request",
                "code": INVALID_REQUEST,
                "retryable": False,
                "fallback": False,
                "requestId": get_request_id(),
            },
        )

    async def run(kind: EndpointKind, body, request: Request) -> JSONResponse:
        result = await _gateway(request).handle(
            kind,
            body.model_dump(exclude_none=True),
            client_key_for(request),
        )
        return JSONResponse(status_code=result.status_code, content=result.body)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        return HealthResponse(
            status="ok",
            provider=settings.provider,
            configured=settings.configured,
        )

    @app.post("/api/ai/summarize-report")
    async def summarize_report(body: SummarizeReportRequest, request: Request):
        return await run(EndpointKind.SUMMARIZE_REPORT, body, request)

    @app.post("/api/ai/behavioral-insights")
    async def behavioral_insights(body: BehavioralInsightsRequest, request: Request):
        return await run(EndpointKind.BEHAVIORAL_INSIGHTS, body, request)

    @app.post("/api/ai/enhance-report")
    async def enhance_report(body: EnhanceReportRequest, request: Request):
        return await run(EndpointKind.ENHANCE_REPORT, body, request)

    @app.post("/api/ai/summarize-note")
    async def summarize_note(body: SummarizeNoteRequest, request: Request):
        return await run(EndpointKind.SUMMARIZE_NOTE, body, request)

    @app.post("/api/ai/analyze-note")
    async def analyze_note(body: AnalyzeNoteRequest, request: Request):
        return await run(EndpointKind.ANALYZE_NOTE, body, request)

    @app.post("/api/ai/categorize-incident")
    async def categorize_incident(body: CategorizeIncidentRequest, request: Request):
        return await run(EndpointKind.CATEGORIZE_INCIDENT, body, request)

    @app.post("/api/ai/analyze-incident")
    async def analyze_incident(body: AnalyzeIncidentRequest, request: Request):
        return await run(EndpointKind.ANALYZE_INCIDENT, body, request)

    @app.post("/api/ai/analyze-behavior")
    async def analyze_behavior(body: AnalyzeBehaviorRequest, request: Request):
        return await run(EndpointKind.ANALYZE_BEHAVIOR, body, request)

    @app.post("/api/ai/query")
    async def query(body: QueryRequest, request: Request):
        return await run(EndpointKind.QUERY, body, request)

    @app.post("/api/ai/treatment-recommendations")
    async def treatment_recommendations(body: TreatmentRecommendationsRequest, request: Request):
        return await run(EndpointKind.TREATMENT_RECOMMENDATIONS, body, request)

    @app.get("/api/ai/status")
    async def ai_status(request: Request):
        """Exempt from quota admission so callers can always check remaining usage."""
        return await _gateway(request).status(client_key_for(request))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
