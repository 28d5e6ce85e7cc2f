"""FastAPI HTTP layer package.

Public re-export so callers can write::

    from saverestore.api import app

    uvicorn saverestore.api:app --reload
"""

from saverestore.api.app import app

__all__ = ["app"]
