"""Collaborators consulted while building request log entries."""
from .address import get_client_address  # noqa: F401
from .geoip import GeoIPLocator  # noqa: F401
from .user_agent import describe_user_agent  # noqa: F401
