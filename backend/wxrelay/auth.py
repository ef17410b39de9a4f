"""
Request authentication dependencies.

- verify_wechat_request: WeChat server signature on /wechat (query params).
- verify_runtime_token: bearer token on the runtime /webhook endpoint.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Query

from wxrelay.config import RuntimeSettings, Settings
from wxrelay.dependencies import get_runtime_settings, get_settings
from wxrelay.services.signature import validate_signature

logger = logging.getLogger(__name__)


async def verify_wechat_request(
    signature: Optional[str] = Query(None),
    timestamp: Optional[str] = Query(None),
    nonce: Optional[str] = Query(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Check that a /wechat request was signed by the WeChat server.

    Raises:
        HTTPException: 400 if signature, timestamp or nonce is missing,
            403 if the signature does not match.
    """
    if not signature or not timestamp or not nonce:
        raise HTTPException(status_code=400, detail="Missing parameters")

    if not validate_signature(settings.wechat_token, signature, timestamp, nonce):
        logger.warning("Invalid WeChat signature")
        raise HTTPException(status_code=403, detail="Invalid signature")


async def verify_runtime_token(
    authorization: Optional[str] = Header(None),
    settings: RuntimeSettings = Depends(get_runtime_settings),
) -> None:
    """
    Check the ``Authorization: Bearer <token>`` header against the runtime's
    configured token. An empty configured token disables the check.

    Raises:
        HTTPException: 401 if the header is missing or does not match.
    """
    expected_token = settings.auth_token
    if not expected_token:
        return

    expected = f"Bearer {expected_token}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        logger.warning("Unauthorized webhook request")
        raise HTTPException(status_code=401, detail="Unauthorized")
