"""
API module containing the REST adapter.
"""

from .error_handlers import register_error_handlers
from .rest_api import CollegiumRestAPI

__all__ = [
    "CollegiumRestAPI",
    "register_error_handlers",
]
