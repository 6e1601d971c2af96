"""
Daily usage ledger for the Narrative Gateway.

Tracks request and token counts per calendar day (UTC), once for the whole
service and once per caller. Limits come from QuotaConfig. Counters live in
memory only and restart from zero with the process.

admit() is a plain synchronous check-and-increment, so under asyncio two
concurrent requests can never both take the last remaining slot.
"""

import hashlib
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request

from .config import QuotaConfig
from .errors import CLIENT_DAILY_LIMIT_REACHED, DAILY_LIMIT_REACHED

logger = logging.getLogger(__name__)

# Trailing slice of the bearer credential mixed into the client key
CREDENTIAL_TAIL_CHARS = 16
MAX_ERROR_RECORDS = 10


@dataclass
class UsageCounter:
    day_key: str
    request_count: int = 0
    token_count: int = 0

    def to_dict(self) -> dict:
        return {
            "day": self.day_key,
            "requests": self.request_count,
            "tokens": self.token_count,
        }


@dataclass(frozen=True)
class AdmissionResult:
    allowed: bool
    reason: Optional[str] = None


def _utc_day(now: float) -> str:
    return datetime.fromtimestamp(now, tz=timezone.utc).date().isoformat()


class UsageLedger:
    """
    Global and per-client daily counters.

    Counters are normalized lazily: whichever call first touches a counter on a
    new day replaces it with a zeroed one.
    """

    def __init__(self, quota: QuotaConfig, clock: Callable[[], float] = time.time):
        """
        Args:
            quota: Daily request/token limits
            clock: Returns epoch seconds; injected by tests to simulate rollover
        """
        self.quota = quota
        self._clock = clock
        self._global = UsageCounter(day_key=self._today())
        self._clients: dict[str, UsageCounter] = {}

    def _today(self) -> str:
        return _utc_day(self._clock())

    def _global_counter(self, today: str) -> UsageCounter:
        if self._global.day_key != today:
            logger.info(
                f"Usage ledger rolled over from {self._global.day_key} to {today} "
                f"({self._global.request_count} requests, {self._global.token_count} tokens)"
            )
            self._global = UsageCounter(day_key=today)
            # Drop yesterday's callers so the map does not grow across days
            self._clients = {
                key: counter for key, counter in self._clients.items()
                if counter.day_key == today
            }
        return self._global

    def _client_counter(self, client_key: str, today: str) -> UsageCounter:
        counter = self._clients.get(client_key)
        if counter is None or counter.day_key != today:
            counter = UsageCounter(day_key=today)
            self._clients[client_key] = counter
        return counter

    def admit(self, client_key: str) -> AdmissionResult:
        """Check both scopes and, if allowed, charge one request to each."""
        today = self._today()
        global_counter = self._global_counter(today)
        client_counter = self._client_counter(client_key, today)

        if (
            global_counter.request_count >= self.quota.global_daily_requests
            or global_counter.token_count >= self.quota.global_daily_tokens
        ):
            logger.warning(
                f"Global daily AI limit reached: {global_counter.request_count} requests, "
                f"{global_counter.token_count} tokens"
            )
            return AdmissionResult(allowed=False, reason=DAILY_LIMIT_REACHED)

        if (
            client_counter.request_count >= self.quota.per_client_daily_requests
            or client_counter.token_count >= self.quota.per_client_daily_tokens
        ):
            logger.warning(f"Client {client_key[:8]} reached its daily AI limit")
            return AdmissionResult(allowed=False, reason=CLIENT_DAILY_LIMIT_REACHED)

        global_counter.request_count += 1
        client_counter.request_count += 1
        return AdmissionResult(allowed=True)

    def record_tokens(self, client_key: str, tokens: int) -> None:
        """Add tokens from a completed upstream call to both scopes."""
        if tokens <= 0:
            return
        today = self._today()
        self._global_counter(today).token_count += tokens
        self._client_counter(client_key, today).token_count += tokens

    def snapshot(self, client_key: Optional[str] = None) -> dict:
        """Today's usage for the status endpoint. Does not charge anything."""
        today = self._today()
        global_counter = self._global_counter(today)
        result = {
            "day": today,
            "global": global_counter.to_dict(),
            "trackedClients": len(self._clients),
        }
        if client_key is not None:
            counter = self._clients.get(client_key)
            if counter is None or counter.day_key != today:
                counter = UsageCounter(day_key=today)
            result["client"] = counter.to_dict()
            result["remaining"] = {
                "requests": max(0, min(
                    self.quota.per_client_daily_requests - counter.request_count,
                    self.quota.global_daily_requests - global_counter.request_count,
                )),
                "tokens": max(0, min(
                    self.quota.per_client_daily_tokens - counter.token_count,
                    self.quota.global_daily_tokens - global_counter.token_count,
                )),
            }
        return result


def client_ip(request: Request) -> str:
    # X-Forwarded-For first (proxies/load balancers)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def derive_client_key(ip: str, authorization: Optional[str] = None) -> str:
    """Stable, non-reversible caller key from origin and credential tail."""
    credential = ""
    if authorization:
        credential = authorization.strip()
        if credential.lower().startswith("bearer "):
            credential = credential[7:].strip()
        credential = credential[-CREDENTIAL_TAIL_CHARS:]
    payload = f"{ip}|{credential}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:24]


def client_key_for(request: Request) -> str:
    return derive_client_key(client_ip(request), request.headers.get("Authorization"))


class ServiceStats:
    """Running totals and a small ring of recent failures for /api/ai/status."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.total_tokens = 0
        self.last_used: Optional[str] = None
        self.errors: deque = deque(maxlen=MAX_ERROR_RECORDS)

    def _stamp(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()

    def record_success(self, tokens: int = 0) -> None:
        self.total_requests += 1
        self.successful_requests += 1
        self.total_tokens += tokens
        self.last_used = self._stamp()

    def record_failure(self, code: str, message: str) -> None:
        self.total_requests += 1
        self.failed_requests += 1
        self.last_used = self._stamp()
        self.errors.append({"timestamp": self.last_used, "code": code, "error": message})

    def to_dict(self) -> dict:
        return {
            "totalRequests": self.total_requests,
            "successfulRequests": self.successful_requests,
            "failedRequests": self.failed_requests,
            "totalTokens": self.total_tokens,
            "lastUsed": self.last_used,
            "errors": list(self.errors),
        }
