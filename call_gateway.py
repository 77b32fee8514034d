# ABOUTME: Uniform gateway for every LLM and search provider call.
# ABOUTME: Applies quota windows, quota-exceeded retries, timeouts, and maps errors to a fixed failure vocabulary.

import asyncio
import json
import logging
import time
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import anyio
import httpx
import openai

from quota_governor import QuotaGovernor, QuotaGrant

logger = logging.getLogger(__name__)


def truncateLog(message: str, maxLength: int = 200) -> str:
    if not message:
        return ""
    return message[:maxLength] + "..." if len(message) > maxLength else message


class FailureKind(str, Enum):
    AUTH_MISSING = "AuthMissing"
    QUOTA_EXCEEDED = "QuotaExceeded"
    TRANSIENT = "Transient"
    MALFORMED = "Malformed"
    UNKNOWN = "Unknown"


class GatewayFailure(Exception):
    """Typed provider failure. Every adapter error reaches callers as one of these."""

    def __init__(self, kind: FailureKind, provider: str, reason: str, attempts: int = 1):
        super().__init__(f"[{provider}] {kind.value}: {reason}")
        self.kind = kind
        self.provider = provider
        self.reason = reason
        self.attempts = attempts


@dataclass
class LlmRequest:
    messages: List[Dict[str, Any]]
    model: Optional[str] = None
    task: str = ""


@dataclass
class SearchRequest:
    terms: List[str]
    maxResults: int = 5
    scopes: List[str] = field(default_factory=list)


@dataclass
class GatewayCallRecord:
    provider: str
    attempt: int
    outcome: str
    durationMs: int
    failureKind: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)


class IProviderAdapter(ABC):
    """Interface every provider adapter implements to be reachable through the gateway."""

    name: str = ""

    @abstractmethod
    async def call(self, request: Any) -> Any:
        pass


def classifyFailure(provider: str, exc: BaseException) -> GatewayFailure:
    """Map a transport, SDK, or parsing error onto the fixed failure vocabulary."""
    if isinstance(exc, GatewayFailure):
        return exc

    status = None
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
    elif isinstance(exc, openai.APIStatusError):
        status = exc.status_code

    if status is not None:
        if status == 401:
            return GatewayFailure(FailureKind.AUTH_MISSING, provider, "Credential rejected (HTTP 401)")
        if status == 403:
            return GatewayFailure(FailureKind.UNKNOWN, provider, "Access forbidden (HTTP 403)")
        if status == 429:
            return GatewayFailure(FailureKind.QUOTA_EXCEEDED, provider, "Provider reported quota exceeded (HTTP 429)")
        if status >= 500 or status == 408:
            return GatewayFailure(FailureKind.TRANSIENT, provider, f"Provider unavailable (HTTP {status})")
        return GatewayFailure(FailureKind.UNKNOWN, provider, f"Unexpected HTTP {status}: {truncateLog(str(exc))}")

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException, openai.APITimeoutError)):
        return GatewayFailure(FailureKind.TRANSIENT, provider, "Call timed out")
    if isinstance(exc, (httpx.TransportError, openai.APIConnectionError)):
        return GatewayFailure(FailureKind.TRANSIENT, provider, f"Transport error: {truncateLog(str(exc))}")
    if isinstance(exc, (json.JSONDecodeError, ET.ParseError, KeyError, IndexError, TypeError)):
        return GatewayFailure(FailureKind.MALFORMED, provider, f"Unusable response: {truncateLog(repr(exc))}")
    return GatewayFailure(FailureKind.UNKNOWN, provider, truncateLog(repr(exc)))


class ExternalCallGateway:
    """
    Single entry point for provider calls.

    Each attempt first claims a quota slot (waiting first-come, first-served per
    provider when the window is exhausted), then runs the adapter under the
    provider's timeout. Provider-reported quota failures are retried with the
    governor's fixed backoff until its attempt cap; every other failure is raised
    immediately.
    """

    def __init__(
        self,
        governor: QuotaGovernor,
        adapters: Optional[Dict[str, IProviderAdapter]] = None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep
    ):
        self.governor = governor
        self.adapters: Dict[str, IProviderAdapter] = dict(adapters or {})
        self.sleep = sleep
        self.listeners: List[Callable[[GatewayCallRecord], None]] = []
        self._queues: Dict[str, asyncio.Lock] = {}

    def register(self, name: str, adapter: IProviderAdapter):
        self.adapters[name] = adapter

    def addListener(self, listener: Callable[[GatewayCallRecord], None]):
        self.listeners.append(listener)

    def _queueFor(self, provider: str) -> asyncio.Lock:
        queue = self._queues.get(provider)
        if queue is None:
            queue = asyncio.Lock()
            self._queues[provider] = queue
        return queue

    async def _awaitSlot(self, provider: str) -> QuotaGrant:
        # asyncio.Lock wakes waiters in FIFO order, so earlier requests are granted first
        async with self._queueFor(provider):
            while True:
                ticket = self.governor.acquire(provider)
                if isinstance(ticket, QuotaGrant):
                    return ticket
                logger.info(f"Waiting {ticket.delaySeconds:.1f}s for {provider} quota window to clear")
                await self.sleep(ticket.delaySeconds)

    def _notify(self, record: GatewayCallRecord):
        for listener in self.listeners:
            try:
                listener(record)
            except Exception:
                logger.exception(f"Gateway listener failed for {record.provider}")

    async def invoke(self, provider: str, request: Any) -> Any:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise GatewayFailure(FailureKind.UNKNOWN, provider, "No adapter registered for provider")

        timeoutSeconds = self.governor.timeoutFor(provider)
        attempt = 0
        while True:
            attempt += 1
            await self._awaitSlot(provider)
            startedAt = time.monotonic()
            try:
                with anyio.fail_after(timeoutSeconds):
                    response = await adapter.call(request)
            except Exception as exc:
                failure = classifyFailure(provider, exc)
                failure.attempts = attempt
                self._notify(GatewayCallRecord(
                    provider, attempt, "failure", int((time.monotonic() - startedAt) * 1000), failure.kind.value
                ))
            else:
                self._notify(GatewayCallRecord(
                    provider, attempt, "success", int((time.monotonic() - startedAt) * 1000),
                    usage=dict(getattr(response, "usage", None) or {})
                ))
                return response

            if failure.kind is FailureKind.QUOTA_EXCEEDED:
                delay = self.governor.retryDelay(provider, attempt)
                if delay is not None:
                    logger.warning(
                        f"{provider} quota exceeded. Attempt {attempt}/{self.governor.maxAttempts(provider)} failed. "
                        f"Retrying in {delay:.0f}s..."
                    )
                    await self.sleep(delay)
                    continue
                logger.error(f"{provider} quota exceeded: all {attempt} attempts failed")
                raise GatewayFailure(
                    FailureKind.QUOTA_EXCEEDED, provider,
                    f"Quota still exceeded after {attempt} attempts", attempts=attempt
                )

            logger.error(f"Gateway call to {provider} failed: {failure.kind.value} - {failure.reason}")
            raise failure


async def invokeWithTransientRetry(gateway: ExternalCallGateway, provider: str, request: Any) -> Any:
    """Phase-level policy: a Transient failure gets exactly one immediate retry."""
    try:
        return await gateway.invoke(provider, request)
    except GatewayFailure as failure:
        if failure.kind is not FailureKind.TRANSIENT:
            raise
        logger.warning(f"Transient failure from {provider}, retrying once: {failure.reason}")
    return await gateway.invoke(provider, request)
