"""
HTTP surface for the Openera MCP service.
"""

from .api import create_app, encode_event

__all__ = ["create_app", "encode_event"]
