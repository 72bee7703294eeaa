import logging

import httpx

from parking_engine.config import USER_SERVICE_TIMEOUT, USER_SERVICE_URL
from parking_engine.errors import Unauthenticated, UpstreamFailure
from parking_engine.roles import Principal, Role

logger = logging.getLogger(__name__)


async def get_current_user(authorization: str, client: httpx.AsyncClient = None) -> Principal:
    """
    Resolve the caller behind an ``Authorization`` header through the user service.

    Raises Unauthenticated when no credentials are given or the user service
    rejects them, and UpstreamFailure when it cannot be reached.
    """
    if not authorization:
        raise Unauthenticated()

    url = f"{USER_SERVICE_URL}/us/api/users/me"
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=USER_SERVICE_TIMEOUT) as own_client:
                response = await own_client.get(url, headers={"Authorization": authorization})
        else:
            response = await client.get(url, headers={"Authorization": authorization})
    except httpx.RequestError as e:
        logger.error(f"Failed to reach User Service: {e}")
        raise UpstreamFailure("User service unavailable") from e

    if response.status_code in (401, 403):
        logger.warning("User service rejected credentials")
        raise Unauthenticated()
    if response.status_code != 200:
        logger.error(f"User service returned {response.status_code}")
        raise UpstreamFailure(f"User service returned {response.status_code}")

    data = response.json()
    if data.get("status") != "success":
        raise Unauthenticated()

    user = data.get("data") or {}
    if not user.get("id"):
        raise Unauthenticated()
    return Principal(id=str(user["id"]), role=Role.parse(user.get("role")))
