"""Web dashboard for the tether session."""

from tether_mcp.web.app import create_app

__all__ = ["create_app"]
