"""remove.bg client used to cut the object overlay out of its background."""

import logging
import time

import requests

from ..errors import ServiceError

logger = logging.getLogger(__name__)

REMOVEBG_URL = "https://api.remove.bg/v1.0/removebg"


class RemoveBgClient:
    """Background removal for overlay images."""

    def __init__(self, api_key: str, max_retries: int = 3, crop: bool = True):
        self.api_key = api_key
        self.max_retries = max_retries
        self.crop = crop    # trim transparent margins around the object

    def _request_with_retry(self, files: dict, data: dict) -> requests.Response:
        """POST with backoff on 429 rate limits."""
        for attempt in range(self.max_retries):
            try:
                response = requests.post(
                    REMOVEBG_URL,
                    files=files,
                    data=data,
                    headers={"X-Api-Key": self.api_key},
                    timeout=60,
                )
            except requests.RequestException as e:
                raise ServiceError(f"remove.bg request failed: {e}") from e
            if response.status_code != 429 or attempt == self.max_retries - 1:
                return response
            wait = 2 ** attempt
            logger.warning(f"remove.bg rate limited, retrying in {wait}s")
            time.sleep(wait)
        return response

    def remove_background(self, image_data: bytes) -> bytes:
        """Return a transparent PNG of the foreground object.

        Raises:
            ServiceError: transport failure or a non-200 answer.
        """
        data = {"size": "auto", "format": "png", "type": "product"}
        if self.crop:
            data["crop"] = "true"
        response = self._request_with_retry(
            files={"image_file": ("overlay.png", image_data, "image/png")},
            data=data,
        )
        if response.status_code == 200:
            return response.content
        raise ServiceError(
            f"remove.bg failed ({response.status_code}): {_error_titles(response)}",
            status_code=response.status_code,
        )


def _error_titles(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    errors = payload.get("errors") if isinstance(payload, dict) else None
    errors = errors or []
    return "; ".join(str(e.get("title", e)) if isinstance(e, dict) else str(e) for e in errors) or "unknown error"
