"""Shared dependencies for server endpoints.

WHY DEPENDENCY INJECTION:
- Endpoints never build their own gateway clients
- Testable: tests override get_gateway_http with a MockTransport client
"""

from typing import Annotated

import httpx
from fastapi import Depends

from app.core.gateway_client import GatewayClient, get_gateway_http
from app.services.gateway_api import GatewayApi


def get_gateway_api(
    http: Annotated[httpx.AsyncClient, Depends(get_gateway_http)],
) -> GatewayApi:
    """Gateway endpoints for server-side callers.

    Server endpoints act before any session exists, so the client has no
    token store and only makes unauthenticated calls.
    """
    return GatewayApi(GatewayClient(http))


Gateway = Annotated[GatewayApi, Depends(get_gateway_api)]
