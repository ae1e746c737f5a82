"""Server router aggregator.

The OAuth callback and the page routes are served at the root, the same
paths the browser sees.
"""

from fastapi import APIRouter

from app.api import auth_callback, pages

router = APIRouter()

# =============================================================================
# Authentication
# =============================================================================

router.include_router(auth_callback.router, tags=["auth"])

# =============================================================================
# Pages
# =============================================================================

router.include_router(pages.router, tags=["pages"])
