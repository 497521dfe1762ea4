"""User-agent decoding with the ``user-agents`` library."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from user_agents import parse as parse_user_agent  # type: ignore[import-untyped]

LOGGER = logging.getLogger(__name__)


def describe_user_agent(raw: Optional[str]) -> Dict[str, Any]:
    """Decode a ``User-Agent`` header into a JSON-friendly descriptor.

    The raw string is always kept under ``full``; parse failures return
    only that.
    """

    descriptor: Dict[str, Any] = {"full": raw or ""}
    if not raw:
        return descriptor
    try:
        ua = parse_user_agent(raw)
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("Failed to parse user agent: %s", exc)
        return descriptor

    descriptor.update(
        {
            "browser": ua.browser.family or None,
            "browserVersion": ua.browser.version_string or None,
            "os": ua.os.family or None,
            "osVersion": ua.os.version_string or None,
            "device": ua.device.family or None,
            "isBot": bool(ua.is_bot),
        }
    )
    return descriptor
