import logging
from typing import Any, Dict

import httpx

from ..config import Settings
from ..exceptions import ConfigurationError, ExternalServiceError, ValidationFailedError

logger = logging.getLogger(__name__)


async def request_playback_otp(video_id: str, settings: Settings) -> Dict[str, Any]:
    """Ask VdoCipher for a short-lived OTP + playback info for ``video_id``."""
    if not video_id:
        raise ValidationFailedError("Video ID required", field="videoId")
    if not settings.vdocipher_api_key:
        raise ConfigurationError("vdocipher_api_key", "VdoCipher API key not configured")

    url = f"{settings.vdocipher_api_url.rstrip('/')}/videos/{video_id}/otp"
    headers = {
        "Authorization": f"Apisecret {settings.vdocipher_api_key}",
        "Content-Type": "application/json",
    }
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(url, json={"ttl": settings.vdocipher_otp_ttl}, headers=headers)
    except httpx.HTTPError as e:
        raise ExternalServiceError("vdocipher", f"unreachable: {e}")

    if response.status_code >= 400:
        logger.error(f"VdoCipher API error for video {video_id}: {response.text[:500]}")
        raise ExternalServiceError("vdocipher", "Failed to get playback info", response.status_code)

    data = response.json()
    return {"otp": data.get("otp"), "playbackInfo": data.get("playbackInfo")}
