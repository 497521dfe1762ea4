"""FastAPI application guarded by the request gatekeeper."""
from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request

from ipguard import Gatekeeper, Settings, configure_logging, get_settings

LOGGER = logging.getLogger(__name__)


def create_app(settings: Settings, gatekeeper: Optional[Gatekeeper] = None) -> FastAPI:
    """Build the application with ``gatekeeper`` installed as HTTP middleware."""

    guard = gatekeeper or Gatekeeper(settings)
    app = FastAPI(title="IP Guard")
    app.state.gatekeeper = guard

    @app.middleware("http")
    async def guard_requests(request: Request, call_next):  # type: ignore[override]
        return await guard.dispatch(request, call_next)

    def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
        """Check the admin token when one is configured."""

        if not settings.admin_token:
            return
        if not x_admin_token or not hmac.compare_digest(
            x_admin_token.encode("utf-8"), settings.admin_token.encode("utf-8")
        ):
            raise HTTPException(status_code=401, detail="Invalid admin token.")

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok"}

    @app.get("/admin/bans", dependencies=[Depends(require_admin)])
    def list_bans() -> dict:
        """List banned addresses."""

        banned = guard.banned()
        return {"count": len(banned), "addresses": banned}

    @app.put("/admin/bans/{address}", dependencies=[Depends(require_admin)])
    def ban_address(address: str) -> dict:
        """Ban ``address``; banning twice is a no-op."""

        added = guard.ban(address)
        return {"address": address, "banned": True, "changed": added}

    @app.delete("/admin/bans/{address}", dependencies=[Depends(require_admin)])
    def unban_address(address: str) -> dict:
        """Lift the ban on ``address``."""

        removed = guard.unban(address)
        return {"address": address, "banned": False, "changed": removed}

    @app.get("/admin/requests", dependencies=[Depends(require_admin)])
    def list_requests(
        limit: int = Query(100, ge=1, le=1000),
        ip: Optional[str] = Query(None, description="Only entries from this address."),
    ) -> dict:
        """Return the most recent logged requests, newest first."""

        entries = guard.load_logs()
        if ip:
            entries = [entry for entry in entries if entry.ip == ip]
        recent = list(reversed(entries))[:limit]
        return {
            "total": len(entries),
            "count": len(recent),
            "entries": [entry.to_dict() for entry in recent],
        }

    return app


settings = get_settings()
configure_logging(settings.log_level)
app = create_app(settings)
