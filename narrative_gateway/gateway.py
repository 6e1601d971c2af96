"""
Gateway request handler.

One NarrativeGateway instance owns the usage ledger, response cache, model
tier selector and upstream invoker. Every narrative endpoint runs the same
sequence and differs only by its EndpointSpec:

    not configured -> 503
    admission      -> 429 when over the daily limits (charged once per request)
    cache lookup   -> cached result, no tokens recorded
    upstream call  -> record tokens, cache, respond
                   -> classified error on failure

Everything up to the upstream call is synchronous, so admission and cache
bookkeeping never interleave with another request.
"""
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Union

from .case_notes import CaseBundle, EndpointKind
from .config import GatewaySettings
from .errors import ErrorClassification, UpstreamError, not_configured, quota_denial
from .model_tiers import ModelTier, ModelTierSelector
from .prompts import (
    build_analyze_behavior_prompt,
    build_analyze_incident_prompt,
    build_analyze_note_prompt,
    build_categorize_incident_prompt,
    build_enhance_prompt,
    build_insights_prompt,
    build_query_prompt,
    build_report_prompt,
    build_summarize_note_prompt,
    build_treatment_prompt,
)
from .response_cache import ResponseCache, fingerprint
from .structured_logging import get_request_id, log_generation, set_request_id
from .upstream import GenerationResult, UpstreamInvoker, build_backend
from .usage_ledger import ServiceStats, UsageLedger

logger = logging.getLogger(__name__)


def _summary_body(result: GenerationResult, bundle: CaseBundle) -> dict:
    return {"summary": result.text, "model": result.model}


def _insights_body(result: GenerationResult, bundle: CaseBundle) -> dict:
    return {"insights": result.text}


def _enhance_body(result: GenerationResult, bundle: CaseBundle) -> dict:
    enhanced = result.text or bundle.report_content
    return {
        "enhancedContent": enhanced,
        "originalLength": len(bundle.report_content),
        "enhancedLength": len(enhanced),
    }


def _note_summary_body(result: GenerationResult, bundle: CaseBundle) -> dict:
    key_points = [
        line.strip() for line in result.text.split("\n")
        if line.strip().startswith(("-", "•"))
    ]
    return {"summary": result.text, "keyPoints": key_points}


def _analysis_body(result: GenerationResult, bundle: CaseBundle) -> dict:
    return {"analysis": dict(result.structured or {})}


def _categorization_body(result: GenerationResult, bundle: CaseBundle) -> dict:
    return {"categorization": dict(result.structured or {})}


def _treatment_body(result: GenerationResult, bundle: CaseBundle) -> dict:
    return {"treatmentPlan": dict(result.structured or {})}


def _answer_body(result: GenerationResult, bundle: CaseBundle) -> dict:
    return {"answer": result.text}


def _text_expansion(bundle: CaseBundle) -> dict:
    if not bundle.is_text_expansion:
        return {}
    return {"tier": ModelTier.PREMIUM, "temperature": 0.5, "max_tokens": 300}


@dataclass(frozen=True)
class EndpointSpec:
    """How one endpoint differs from the others."""
    tier: ModelTier
    temperature: float
    build_prompt: Callable[[CaseBundle], tuple]
    build_body: Callable[[GenerationResult, CaseBundle], dict]
    max_tokens: Optional[int] = None  # None: AI_MAX_TOKENS
    cache_ttl: Optional[int] = None  # None: AI_CACHE_TTL_SECONDS
    structured: bool = False
    # Per-request overrides, e.g. text expansion on the query endpoint
    refine: Optional[Callable[[CaseBundle], dict]] = None

    def for_bundle(self, bundle: CaseBundle) -> "EndpointSpec":
        overrides = self.refine(bundle) if self.refine else {}
        return replace(self, **overrides) if overrides else self


# Report-producing endpoints use the premium tier; quick helpers use standard
ENDPOINTS = {
    EndpointKind.SUMMARIZE_REPORT: EndpointSpec(
        tier=ModelTier.PREMIUM,
        temperature=0.3,
        build_prompt=build_report_prompt,
        build_body=_summary_body,
    ),
    EndpointKind.BEHAVIORAL_INSIGHTS: EndpointSpec(
        tier=ModelTier.STANDARD,
        temperature=0.2,
        max_tokens=800,
        build_prompt=build_insights_prompt,
        build_body=_insights_body,
    ),
    EndpointKind.ENHANCE_REPORT: EndpointSpec(
        tier=ModelTier.PREMIUM,
        temperature=0.3,
        cache_ttl=900,
        build_prompt=build_enhance_prompt,
        build_body=_enhance_body,
    ),
    EndpointKind.SUMMARIZE_NOTE: EndpointSpec(
        tier=ModelTier.STANDARD,
        temperature=0.2,
        max_tokens=500,
        cache_ttl=600,
        build_prompt=build_summarize_note_prompt,
        build_body=_note_summary_body,
    ),
    EndpointKind.ANALYZE_NOTE: EndpointSpec(
        tier=ModelTier.PREMIUM,
        temperature=0.1,
        max_tokens=800,
        cache_ttl=600,
        structured=True,
        build_prompt=build_analyze_note_prompt,
        build_body=_analysis_body,
    ),
    EndpointKind.CATEGORIZE_INCIDENT: EndpointSpec(
        tier=ModelTier.STANDARD,
        temperature=0.1,
        max_tokens=300,
        cache_ttl=600,
        structured=True,
        build_prompt=build_categorize_incident_prompt,
        build_body=_categorization_body,
    ),
    EndpointKind.ANALYZE_INCIDENT: EndpointSpec(
        tier=ModelTier.PREMIUM,
        temperature=0.2,
        max_tokens=1000,
        structured=True,
        build_prompt=build_analyze_incident_prompt,
        build_body=_analysis_body,
    ),
    EndpointKind.ANALYZE_BEHAVIOR: EndpointSpec(
        tier=ModelTier.STANDARD,
        temperature=0.2,
        max_tokens=800,
        structured=True,
        build_prompt=build_analyze_behavior_prompt,
        build_body=_analysis_body,
    ),
    EndpointKind.QUERY: EndpointSpec(
        tier=ModelTier.STANDARD,
        temperature=0.3,
        max_tokens=1000,
        cache_ttl=600,
        build_prompt=build_query_prompt,
        build_body=_answer_body,
        refine=_text_expansion,
    ),
    EndpointKind.TREATMENT_RECOMMENDATIONS: EndpointSpec(
        tier=ModelTier.PREMIUM,
        temperature=0.3,
        max_tokens=1500,
        structured=True,
        build_prompt=build_treatment_prompt,
        build_body=_treatment_body,
    ),
}


@dataclass(frozen=True)
class GatewayResponse:
    status_code: int
    body: dict


class NarrativeGateway:
    """Ledger, cache, tiers and upstream behind one `handle()` call per request."""

    def __init__(
        self,
        settings: GatewaySettings,
        invoker: Optional[UpstreamInvoker] = None,
        ledger: Optional[UsageLedger] = None,
        cache: Optional[ResponseCache] = None,
        selector: Optional[ModelTierSelector] = None,
        stats: Optional[ServiceStats] = None,
    ):
        self.settings = settings
        self.invoker = invoker
        self.ledger = ledger or UsageLedger(settings.quota)
        self.cache = cache or ResponseCache(settings.cache_max_entries)
        self.selector = selector or ModelTierSelector(
            provider=settings.provider,
            standard_model=settings.standard_model,
            premium_model=settings.premium_model,
        )
        self.stats = stats or ServiceStats()

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> "NarrativeGateway":
        invoker = None
        if settings.configured:
            invoker = UpstreamInvoker(
                build_backend(settings),
                timeout_seconds=settings.request_timeout_seconds,
            )
            logger.info(f"AI provider '{settings.provider}' configured")
        else:
            logger.warning("No AI API key configured; every narrative request will ask for local fallback")
        return cls(settings, invoker=invoker)

    @property
    def configured(self) -> bool:
        return self.invoker is not None

    def _failure(self, endpoint: str, classification: ErrorClassification, request_id: str) -> GatewayResponse:
        outcome = "denied" if classification.http_status == 429 and not classification.retryable else "failed"
        log_generation(endpoint, outcome, code=classification.kind)
        self.stats.record_failure(classification.kind, classification.message)
        return GatewayResponse(classification.http_status, classification.to_body(request_id))

    def _fingerprint(self, endpoint: str, model: str, payload: dict) -> Optional[str]:
        try:
            return fingerprint(endpoint, model, payload)
        except Exception as e:
            logger.warning(f"Could not fingerprint {endpoint} payload, bypassing cache: {e}")
            return None

    def _cache_lookup(self, key: Optional[str]) -> Optional[GenerationResult]:
        if key is None:
            return None
        try:
            return self.cache.lookup(key)
        except Exception as e:
            logger.warning(f"Cache lookup failed, treating as miss: {e}")
            return None

    def _cache_store(self, key: Optional[str], result: GenerationResult, ttl: int) -> None:
        if key is None:
            return
        try:
            self.cache.store(key, result, ttl)
        except Exception as e:
            logger.warning(f"Cache store failed: {e}")

    async def handle(
        self,
        kind: Union[EndpointKind, str],
        payload: dict,
        client_key: str,
    ) -> GatewayResponse:
        """Run one narrative request end to end. Never raises for upstream failures."""
        kind = EndpointKind(kind)
        spec = ENDPOINTS[kind]
        endpoint = kind.value
        request_id = get_request_id() or set_request_id()

        if not self.configured:
            return self._failure(endpoint, not_configured(), request_id)

        admission = self.ledger.admit(client_key)
        if not admission.allowed:
            return self._failure(endpoint, quota_denial(admission.reason), request_id)

        bundle = CaseBundle.from_request(kind, payload)
        spec = spec.for_bundle(bundle)
        model = self.selector.resolve(spec.tier)
        key = self._fingerprint(endpoint, model, payload)

        cached = self._cache_lookup(key)
        if cached is not None:
            log_generation(endpoint, "cached", model=cached.model)
            return self._success(spec, cached, bundle, request_id, cached=True)

        system_prompt, user_prompt = spec.build_prompt(bundle)
        start = time.time()
        try:
            result = await self.invoker.invoke(
                model=model,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                max_tokens=spec.max_tokens or self.settings.max_tokens,
                temperature=spec.temperature,
                structured=spec.structured,
            )
        except UpstreamError as e:
            return self._failure(endpoint, e.classification, request_id)

        self.ledger.record_tokens(client_key, result.tokens_used)
        self.stats.record_success(result.tokens_used)
        self._cache_store(key, result, spec.cache_ttl or self.settings.cache_ttl_seconds)
        log_generation(
            endpoint,
            "generated",
            model=result.model,
            tokens=result.tokens_used,
            duration_ms=(time.time() - start) * 1000,
        )
        return self._success(spec, result, bundle, request_id, cached=False)

    def _success(
        self,
        spec: EndpointSpec,
        result: GenerationResult,
        bundle: CaseBundle,
        request_id: str,
        cached: bool,
    ) -> GatewayResponse:
        body = spec.build_body(result, bundle)
        body.update({
            # Tokens charged to this request; a cache hit costs nothing
            "usage": {"total_tokens": 0 if cached else result.tokens_used},
            "requestId": request_id,
            "cached": cached,
        })
        return GatewayResponse(200, body)

    async def status(self, client_key: Optional[str] = None) -> dict:
        """Ledger and cache state plus a 1-token health check. Never charges quota."""
        models = self.selector.to_dict()
        report = {
            "configured": self.configured,
            "provider": self.settings.provider,
            "models": models,
            "limits": self.settings.quota.to_dict(),
            "dailyUsage": self.ledger.snapshot(client_key),
            "cache": self.cache.stats(),
            "usage": self.stats.to_dict(),
        }

        if not self.configured:
            report.update({
                "available": False,
                "model": None,
                "status": "not_configured",
                "error": not_configured().message,
            })
            return report

        try:
            check = await self.invoker.health_check(models["standard"])
        except UpstreamError as e:
            logger.warning(f"AI status check failed: {e.classification.kind}")
            report.update({
                "available": False,
                "model": models["standard"],
                "status": "error",
                "error": e.classification.message,
                "code": e.classification.kind,
            })
            return report

        report.update({"available": True, "model": check.model, "status": "operational"})
        return report

    async def aclose(self) -> None:
        if self.invoker is not None:
            await self.invoker.aclose()
