"""Liveness probe for a Revisium backend."""

import logging

import httpx

logger = logging.getLogger(__name__)

LIVENESS_PATH = "/health/liveness"
HEALTH_TIMEOUT_SECONDS = 3.0


async def is_healthy(base_url: str, timeout: float = HEALTH_TIMEOUT_SECONDS) -> bool:
    """Check whether the backend at base_url answers its liveness endpoint.

    Issues a single GET with a hard timeout. Connection errors, timeouts and
    non-2xx responses all report False; nothing is raised to the caller.

    Args:
        base_url: Backend base URL (e.g. "http://localhost:9222")
        timeout: Request timeout in seconds (default: 3.0)

    Returns:
        True if the liveness endpoint returned a 2xx status
    """
    url = f"{base_url.rstrip('/')}{LIVENESS_PATH}"
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.debug(f"Liveness probe to {url} failed: {e}")
        return False

    return response.is_success
