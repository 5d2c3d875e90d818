"""
============================================================================
FLEET WATCHDOG - RESILIENT FETCH
============================================================================
Every outbound HTTP call made by the watchdog goes through this module.

    fetch(url, options, max_retries)
    ├── URLValidator.validate()     ← bad URL: logged, None
    ├── attempt 0..max_retries
    │   ├── _send()                 ← timeout = base + attempt × increment
    │   ├── classify_error()        ← ErrorKind
    │   ├── EDGE_BLOCKED → _bypass()   (exactly once, result returned)
    │   ├── OTHER        → report, None
    │   └── retryable    → report, backoff, next attempt
    └── exhausted → report, None

    probe(url, timeout)             ← single GET, no retries, no alerts

``fetch`` never raises. Callers treat ``None`` as "this step failed".

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from config.constants import (
    AlertChannel,
    BINARY_CONTENT_TYPES,
    HTTPMethods,
    MessageTemplates,
    StatusCodes,
)
from config.settings import FetchSettings
from exceptions.fetch import BypassUnavailableError, InvalidTargetURLError
from monitoring.classifier import (
    ClassifiedError,
    ErrorKind,
    classify_error,
    extract_message,
    is_suppressed,
)
from utils.logger import get_logger
from utils.validators import URLValidator


logger = get_logger("ResilientFetch")

SleepFunc = Callable[[float], Awaitable[Any]]


# ============================================================================
# REQUEST DESCRIPTION
# ============================================================================

@dataclass
class FetchOptions:
    """
    Per-call request options.

    ``timeout`` overrides the configured base timeout; the per-attempt
    increment is still added on retries.
    """
    method: str = HTTPMethods.GET.value
    headers: Dict[str, str] = field(default_factory=dict)
    data: Any = None
    params: Optional[Dict[str, Any]] = None
    timeout: Optional[float] = None
    response_type: str = "json"  # json | text | arraybuffer
    bypass_url: Optional[str] = None
    max_redirects: Optional[int] = None


@dataclass
class FetchAttempt:
    """Everything needed to perform (or relay) one attempt."""
    url: str
    method: str
    headers: Dict[str, str]
    data: Any
    params: Optional[Dict[str, Any]]
    timeout: float
    attempt: int
    max_redirects: int


def is_binary_content(content_type: Optional[str]) -> bool:
    """True for content types that must not be decoded as text."""
    if not content_type:
        return False
    content_type = content_type.lower()
    return any(marker in content_type for marker in BINARY_CONTENT_TYPES)


def decode_body(response: httpx.Response, response_type: str = "json") -> Union[bytes, str, Any]:
    """
    Decode a response body.

    Binary content types, or an explicit ``arraybuffer`` response type,
    come back as raw bytes. JSON is parsed when possible, otherwise the
    text is returned.
    """
    content_type = response.headers.get("content-type")
    if response_type == "arraybuffer" or is_binary_content(content_type):
        return response.content

    if response_type == "json" or (content_type and "json" in content_type):
        try:
            return response.json()
        except ValueError:
            return response.text

    return response.text


# ============================================================================
# RESILIENT FETCH
# ============================================================================

class ResilientFetch:
    """
    Outbound HTTP with bounded retries, timeout escalation, exponential
    backoff with jitter, and a bypass relay for edge-blocked requests.

    Parameters
    ----------
    settings : FetchSettings
        Timeouts, retry and backoff configuration.
    alerts : AlertManager | None
        Failure reports go to its HTTP_FAILURES channel. Without one
        failures are only logged.
    instance_name : str
        Prefix identifying this watchdog in failure reports.
    transport : httpx.AsyncBaseTransport | None
        Injected in tests; the default network transport otherwise.
    sleep : callable
        Used for backoff delays.
    """

    def __init__(
        self,
        settings: FetchSettings,
        alerts: Any = None,
        *,
        instance_name: str = "watchdog",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.settings = settings
        self.alerts = alerts
        self.instance_name = instance_name
        self._transport = transport
        self._sleep = sleep
        self._rng = rng

        self._stats: Dict[str, int] = {
            "requests": 0,
            "succeeded": 0,
            "failed": 0,
            "retries": 0,
            "bypassed": 0,
            "probes": 0,
        }

    # ------------------------------------------------------------------
    # BACKOFF
    # ------------------------------------------------------------------

    def calculate_backoff(self, attempt: int) -> float:
        """
        Delay in seconds before the retry that follows ``attempt``.

        ``min(base × 2^attempt, cap)`` plus up to ``jitter`` of that value.
        """
        base = min(self.settings.backoff_base * (2 ** attempt), self.settings.backoff_cap)
        return base + self._rng() * self.settings.backoff_jitter * base

    def attempt_timeout(self, attempt: int, base: Optional[float] = None) -> float:
        base = self.settings.default_timeout if base is None else base
        return base + attempt * self.settings.timeout_increment

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    async def fetch(
        self,
        url: str,
        options: Optional[FetchOptions] = None,
        max_retries: Optional[int] = None,
    ) -> Optional[httpx.Response]:
        """
        Perform a request with retries. Never raises.

        Returns
        -------
        httpx.Response | None
            The successful (2xx/3xx) response, the bypass relay's
            response for edge-blocked requests, or None on failure.
        """
        options = options or FetchOptions()
        retries = self.settings.max_retries if max_retries is None else max(0, max_retries)
        self._stats["requests"] += 1

        try:
            url = URLValidator.validate(url)
        except InvalidTargetURLError as e:
            logger.error(f"[Fetch] Rejected request: {e.log_format()}")
            self._stats["failed"] += 1
            return None

        last_error: Optional[ClassifiedError] = None

        for attempt in range(retries + 1):
            request = self._build_attempt(url, options, attempt)

            try:
                response = await self._send(request)
            except Exception as exc:
                classified = classify_error(exc)
            else:
                self._stats["succeeded"] += 1
                logger.debug(
                    f"[Fetch] {request.method} {url} → {response.status_code} "
                    f"(attempt {attempt + 1})"
                )
                return response

            last_error = classified

            if classified.kind is ErrorKind.EDGE_BLOCKED:
                return await self._bypass(request, options, classified)

            if not classified.retryable:
                self._stats["failed"] += 1
                await self._report(
                    MessageTemplates.NOT_RETRYABLE.format(
                        instance=self.instance_name, url=url, message=classified.message
                    ),
                    classified,
                )
                return None

            # The last attempt is covered by the exhaustion report
            if attempt < retries:
                if classified.is_timeout:
                    text = MessageTemplates.ATTEMPT_TIMEOUT.format(
                        instance=self.instance_name, attempt=attempt + 1, url=url
                    )
                else:
                    text = MessageTemplates.ATTEMPT_FAILED.format(
                        instance=self.instance_name,
                        attempt=attempt + 1,
                        url=url,
                        message=classified.message,
                    )
                await self._report(text, classified)

                delay = self.calculate_backoff(attempt)
                self._stats["retries"] += 1
                logger.debug(
                    f"[Fetch] {url} {classified.kind.value} on attempt "
                    f"{attempt + 1}/{retries + 1}, retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        self._stats["failed"] += 1
        if last_error is not None:
            await self._report(
                MessageTemplates.RETRIES_EXHAUSTED.format(
                    instance=self.instance_name,
                    attempts=retries + 1,
                    url=url,
                    message=last_error.message,
                ),
                last_error,
            )
        return None

    async def probe(self, url: str, timeout: float) -> Optional[httpx.Response]:
        """
        Single GET without retries or alerts.

        Returns the response when it is 2xx/3xx, otherwise None.
        """
        self._stats["probes"] += 1
        try:
            url = URLValidator.validate(url)
        except InvalidTargetURLError as e:
            logger.warning(f"[Probe] {e.message}")
            return None

        request = FetchAttempt(
            url=url,
            method=HTTPMethods.GET.value,
            headers={},
            data=None,
            params=None,
            timeout=timeout,
            attempt=0,
            max_redirects=self.settings.max_redirects,
        )
        started = time.perf_counter()
        try:
            response = await self._send(request)
        except Exception as exc:
            classified = classify_error(exc)
            logger.info(
                f"[Probe] ✗ {url} {classified.kind.value}: {classified.message}"
            )
            return None

        logger.debug(
            f"[Probe] ✓ {url} → {response.status_code} "
            f"in {time.perf_counter() - started:.3f}s"
        )
        return response

    def get_stats(self) -> Dict[str, Any]:
        """Return request counters for diagnostics."""
        return dict(self._stats)

    # ------------------------------------------------------------------
    # INTERNALS
    # ------------------------------------------------------------------

    def _build_attempt(self, url: str, options: FetchOptions, attempt: int) -> FetchAttempt:
        return FetchAttempt(
            url=url,
            method=options.method.upper(),
            headers=dict(options.headers),
            data=options.data,
            params=options.params,
            timeout=self.attempt_timeout(attempt, options.timeout),
            attempt=attempt,
            max_redirects=(
                self.settings.max_redirects
                if options.max_redirects is None
                else options.max_redirects
            ),
        )

    def _client(self, request: FetchAttempt) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=httpx.Timeout(request.timeout),
            follow_redirects=True,
            max_redirects=request.max_redirects,
            headers={"User-Agent": self.settings.user_agent},
        )

    @staticmethod
    def _body_kwargs(data: Any) -> Dict[str, Any]:
        if data is None:
            return {}
        if isinstance(data, (bytes, str)):
            return {"content": data}
        return {"json": data}

    async def _send(self, request: FetchAttempt) -> httpx.Response:
        """
        Perform one attempt.

        The whole exchange, redirects included, is cancelled once the
        attempt's timeout elapses. Non-2xx/3xx responses raise
        ``httpx.HTTPStatusError``.
        """
        async with self._client(request) as client:
            response = await asyncio.wait_for(
                client.request(
                    request.method,
                    request.url,
                    headers=request.headers,
                    params=request.params,
                    **self._body_kwargs(request.data),
                ),
                timeout=request.timeout,
            )

        if not StatusCodes.is_success(response.status_code):
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code} for {request.url}",
                request=response.request,
                response=response,
            )
        return response

    async def _bypass(
        self,
        request: FetchAttempt,
        options: FetchOptions,
        blocked: ClassifiedError,
    ) -> Optional[httpx.Response]:
        """
        Re-issue an edge-blocked request through the bypass relay.

        Called at most once per ``fetch``. Its outcome is final.
        """
        relay = options.bypass_url or self.settings.bypass_url
        self._stats["bypassed"] += 1
        logger.warning(
            f"[Bypass] {request.url} blocked with {blocked.status}, "
            f"relaying through bypass"
        )

        try:
            if not relay:
                raise BypassUnavailableError(request.url)
            response = await self._send_bypass(relay, request, options)
        except Exception as exc:
            self._stats["failed"] += 1
            classified = classify_error(exc)
            await self._report(
                MessageTemplates.BYPASS_FAILED.format(
                    instance=self.instance_name,
                    url=request.url,
                    message=extract_message(exc),
                ),
                classified,
            )
            return None

        self._stats["succeeded"] += 1
        logger.info(f"[Bypass] ✓ {request.url} → {response.status_code}")
        return response

    async def _send_bypass(
        self,
        relay: str,
        request: FetchAttempt,
        options: FetchOptions,
    ) -> httpx.Response:
        payload = {
            "url": request.url,
            "method": request.method,
            "headers": request.headers,
            "data": request.data,
            "params": request.params,
            "responseType": options.response_type,
            # relay expects milliseconds
            "timeout": int(request.timeout * 1000),
            "followRedirects": True,
            "maxRedirects": request.max_redirects,
        }
        if isinstance(payload["data"], bytes):
            payload["data"] = payload["data"].decode("utf-8", errors="replace")

        relay_request = FetchAttempt(
            url=URLValidator.validate(relay),
            method=HTTPMethods.POST.value,
            headers={**request.headers, "Content-Type": "application/json"},
            data=payload,
            params=None,
            timeout=request.timeout,
            attempt=request.attempt,
            max_redirects=request.max_redirects,
        )
        return await self._send(relay_request)

    async def _report(self, text: str, error: ClassifiedError) -> None:
        """Alert once for a failure, unless it is suppressed."""
        if is_suppressed(text, error.status):
            logger.info(f"[Fetch] (suppressed) {text}")
            return

        logger.warning(f"[Fetch] {text}")
        if self.alerts is not None:
            await self.alerts.enqueue_alert(
                text, channel=AlertChannel.HTTP_FAILURES, status=error.status
            )
