"""
HTTP surface for polydb: error translation and schema inspection routes.
"""

from .app import create_app
from .errors import STATUS_BY_CODE, install_error_handlers, status_for

__all__ = ["create_app", "install_error_handlers", "status_for", "STATUS_BY_CODE"]
