"""Per-request guard: ban check, rate tracking and selective request logging."""
from __future__ import annotations

import json
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import parse_qsl

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from ipguard.blocklist import PersistentSet
from ipguard.clients import GeoIPLocator, describe_user_agent, get_client_address
from ipguard.config import Settings
from ipguard.rate_limit import Clock, Decision, RateLimitEngine, RateRecord, SlidingWindowCounter
from ipguard.request_log import LogEntry, RequestLogStore, filter_headers
from ipguard.utils import isoformat_ms, matches, now_ms

LOGGER = logging.getLogger(__name__)

BLOCKED_MESSAGE = "Your IP is blocked."

CallNext = Callable[[Request], Awaitable[Response]]


def decode_body(raw: bytes, content_type: str) -> Any:
    """Best-effort decoding of a request body for the log."""

    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    content_type = content_type.lower()
    if "json" in content_type:
        try:
            return json.loads(text)
        except ValueError:
            return text
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(text, keep_blank_values=True))
    return text


class Gatekeeper:
    """Owns the ban list, the rate counters and the request log.

    Use :meth:`dispatch` as HTTP middleware; :meth:`ban` and :meth:`unban`
    are the administrative entry points.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Clock = now_ms,
        resolve_address: Optional[Callable[[Request], str]] = None,
        locate: Optional[Callable[[str], Optional[Dict[str, Any]]]] = None,
        describe_agent: Callable[[Optional[str]], Dict[str, Any]] = describe_user_agent,
    ) -> None:
        self.settings = settings
        self.banlist = PersistentSet(settings.blocked_ips_path)
        self.counter = SlidingWindowCounter(settings.rate_limit_path)
        self.engine = RateLimitEngine(self.counter, self.banlist, clock=clock)
        self.log_store = RequestLogStore(settings.requests_path)
        self._resolve_address = resolve_address or partial(
            get_client_address, trust_forwarded=settings.trust_forwarded
        )
        self._locate = locate or GeoIPLocator(settings.geoip_db_path)
        self._describe_agent = describe_agent

    # administrative operations

    def ban(self, address: str) -> bool:
        added = self.banlist.add(address)
        if added:
            LOGGER.info("address banned", extra={"client_ip": address})
        return added

    def unban(self, address: str) -> bool:
        removed = self.banlist.remove(address)
        if removed:
            LOGGER.info("address unbanned", extra={"client_ip": address})
        return removed

    def is_banned(self, address: str) -> bool:
        return self.banlist.contains(address)

    def banned(self) -> List[str]:
        return sorted(self.banlist.all())

    def rate_records(self) -> Dict[str, RateRecord]:
        return self.counter.snapshot()

    def load_logs(self) -> List[LogEntry]:
        return self.log_store.load_all()

    # request path

    def should_log(self, method: str, path: str) -> bool:
        return matches(method, path, self.settings.save_endpoints)

    def observe(self, address: str) -> Decision:
        return self.engine.observe(
            address, self.settings.rate_limit_window_ms, self.settings.rate_limit_requests
        )

    def build_entry(self, request: Request, address: str, body: bytes) -> LogEntry:
        endpoint = request.url.path
        if request.url.query:
            endpoint = f"{endpoint}?{request.url.query}"
        return LogEntry(
            ip=address,
            method=request.method,
            endpoint=endpoint,
            timestamp=isoformat_ms(),
            user_agent=self._describe_agent(request.headers.get("user-agent")),
            geo=self._locate(address),
            body=decode_body(body, request.headers.get("content-type", "")),
            headers=filter_headers(request.headers),
        )

    def record(self, entry: LogEntry) -> bool:
        return self.log_store.append(entry, self.settings.max_size)

    def reject(self) -> Response:
        return PlainTextResponse(BLOCKED_MESSAGE, status_code=403)

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        """Run one request through ban check, rate tracking and logging.

        A banned address gets a 403 and nothing else happens. A request that
        pushes its address over the limit is still forwarded; the ban only
        applies to later requests.
        """

        address = self._resolve_address(request)
        if await run_in_threadpool(self.is_banned, address):
            LOGGER.info(
                "rejected banned address",
                extra={"client_ip": address, "method": request.method, "path": request.url.path},
            )
            return self.reject()

        await run_in_threadpool(self.observe, address)

        if self.should_log(request.method, request.url.path):
            try:
                body = await request.body()
                entry = await run_in_threadpool(self.build_entry, request, address, body)
                await run_in_threadpool(self.record, entry)
            except Exception:  # noqa: BLE001
                LOGGER.exception(
                    "Failed to log request",
                    extra={"client_ip": address, "path": request.url.path},
                )

        return await call_next(request)

    async def block_only(self, request: Request, call_next: CallNext) -> Response:
        """Reject banned addresses and forward everything else untouched."""

        address = self._resolve_address(request)
        if await run_in_threadpool(self.is_banned, address):
            return self.reject()
        return await call_next(request)
