"""ListLens: ratings export import and viewing analytics.

Exposes the ASGI ``app`` served by ``python -m listlens`` and the
``create_app`` factory for embedding the API in another process.
"""

from __future__ import annotations

from app.main import app, create_app

__all__ = ["app", "create_app"]
