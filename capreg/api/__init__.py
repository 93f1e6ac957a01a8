"""capreg API package.

This module provides an optional FastAPI service layer around the record
registry: create and rename for authenticated principals, plus the public
address and existence reads.
"""

from .server import create_app  # noqa: F401
