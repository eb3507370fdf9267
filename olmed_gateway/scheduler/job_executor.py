"""Job executor for sending scheduled HTTP requests.

The JobExecutor turns a RequestTemplate into one outbound request,
injects the shared Olmed bearer token where the target belongs to the
ERP domain, and reports the outcome. Transport failures and non-2xx
responses become failed outcomes; they are never raised.
"""

import json
import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, Optional

import httpx

from olmed_gateway.auth.token_store import DEFAULT_PROVIDER_KEY, TokenStore
from olmed_gateway.clock import utcnow
from olmed_gateway.event_log import EventLog
from olmed_gateway.scheduler.registry import ExecutionOutcome
from olmed_gateway.scheduler.schedule import RequestTemplate

if TYPE_CHECKING:
    from olmed_gateway.auth.olmed_auth import OlmedAuthClient

logger = logging.getLogger(__name__)

ALREADY_COMPLETED_MARKER = "Request already completed! Use GUID below"
BODY_METHODS = ("POST", "PUT")
DEFAULT_CONTENT_TYPE = "application/json"
RESPONSE_LOG_LIMIT = 1000


class JobExecutor:
    """Sends job requests and records their outcome.

    Example:
        executor = JobExecutor(client, token_store, auth_client)
        outcome = await executor.execute(template, job_id="olmed-sync-products")
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_store: TokenStore,
        auth_client: Optional["OlmedAuthClient"] = None,
        auth_domain: str = "grupaolmed.pl",
        provider_key: str = DEFAULT_PROVIDER_KEY,
        event_log: Optional[EventLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the job executor.

        Args:
            http_client: Shared HTTP client
            token_store: Source of the shared bearer token
            auth_client: Refreshes the token before use when near expiry
            auth_domain: Hosts in this domain receive the shared token
            provider_key: Token store key of the shared token
            event_log: Structured event log for response notes
            clock: Time source
        """
        self._client = http_client
        self._token_store = token_store
        self._auth_client = auth_client
        self._auth_domain = auth_domain.lower().lstrip(".")
        self._provider_key = provider_key
        self._event_log = event_log
        self._clock = clock

    def targets_auth_domain(self, url: str) -> bool:
        """Whether the URL host is the ERP domain or one of its subdomains."""
        try:
            host = httpx.URL(url).host.lower()
        except httpx.InvalidURL:
            return False
        return host == self._auth_domain or host.endswith("." + self._auth_domain)

    def build_request(self, template: RequestTemplate, bearer: Optional[str] = None) -> httpx.Request:
        """Build the outbound request for a template.

        Caller-supplied Content-Type is not copied as a plain header; it is
        set together with the body so both stay consistent. The body is
        only attached for POST/PUT and only when non-empty.

        Args:
            template: Request to send
            bearer: Bearer token to attach, if any

        Returns:
            The prepared request
        """
        headers: Dict[str, str] = {}
        content_type = DEFAULT_CONTENT_TYPE
        for name, value in template.headers.items():
            if name.lower() == "content-type":
                content_type = value or DEFAULT_CONTENT_TYPE
                continue
            headers[name] = value

        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"

        content: Optional[bytes] = None
        if template.body and template.method in BODY_METHODS:
            content = template.body.encode("utf-8")
            headers["Content-Type"] = content_type

        return self._client.build_request(
            template.method,
            template.url,
            headers=headers,
            content=content,
        )

    async def _resolve_bearer(self, template: RequestTemplate, label: str) -> Optional[str]:
        if not template.use_shared_auth or not self.targets_auth_domain(template.url):
            return None

        if self._auth_client is not None:
            token = await self._auth_client.ensure_token()
        else:
            info = self._token_store.get(self._provider_key)
            token = info.token if info else None

        if token:
            logger.debug(f"Attached shared Olmed token to job {label}")
        else:
            logger.warning(f"No valid Olmed token for job {label}, sending without authorization")
        return token

    async def execute(self, template: RequestTemplate, job_id: Optional[str] = None) -> ExecutionOutcome:
        """Send one request.

        Args:
            template: Request to send
            job_id: Job the request belongs to, for logging

        Returns:
            Outcome with the status code (0 on transport failure) and body
        """
        label = job_id or "ad-hoc"
        executed_at = self._clock()
        started = time.perf_counter()

        try:
            bearer = await self._resolve_bearer(template, label)
            request = self.build_request(template, bearer)
            response = await self._client.send(request)
        except httpx.HTTPError as e:
            duration_ms = (time.perf_counter() - started) * 1000
            error = str(e) or type(e).__name__
            logger.error(f"Request for job {label} failed: {error}")
            return ExecutionOutcome(
                success=False,
                status_code=0,
                executed_at=executed_at,
                error=error,
                duration_ms=duration_ms,
            )

        duration_ms = (time.perf_counter() - started) * 1000
        body = response.text
        await self._inspect_response(label, body, response.is_success)

        log_body = body if len(body) <= RESPONSE_LOG_LIMIT else body[:RESPONSE_LOG_LIMIT] + "..."
        logger.info(f"Job {label} response: {response.status_code} - {log_body}")

        return ExecutionOutcome(
            success=response.is_success,
            status_code=response.status_code,
            response_body=body,
            executed_at=executed_at,
            error=None if response.is_success else f"HTTP {response.status_code}",
            duration_ms=duration_ms,
        )

    async def _inspect_response(self, job_id: str, body: str, is_success: bool) -> None:
        """Report notable JSON responses, such as already-completed requests."""
        if not body.strip():
            return
        try:
            data = json.loads(body)
        except ValueError as e:
            logger.debug(f"Response of job {job_id} is not valid JSON: {e}")
            return

        if not isinstance(data, dict):
            return

        message = data.get("message")
        if not isinstance(message, str) or ALREADY_COMPLETED_MARKER.lower() not in message.lower():
            return

        request_guid = data.get("requestGUID")
        logger.info(f"Job {job_id}: request already completed, requestGUID: {request_guid}")
        if self._event_log is not None:
            await self._event_log.job_event(
                job_id,
                "REQUEST_ALREADY_COMPLETED",
                f"Request already completed, received GUID: {request_guid}",
                {
                    "message": message,
                    "request_guid": request_guid,
                    "full_response": body,
                    "is_success": is_success,
                },
            )
