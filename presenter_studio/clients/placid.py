"""Layer compositing client (Placid API)."""

import logging
import time

import requests

from ..errors import CompositeTimeout, ServiceError

logger = logging.getLogger(__name__)


class PlacidClient:
    """Render a base image with an overlay layer through a Placid template.

    The template needs two image layers named "base" and "overlay".
    """

    def __init__(
        self,
        api_token: str,
        template_uuid: str,
        poll_interval: float = 1.0,
        max_poll_attempts: int = 60,
    ):
        self.api_token = api_token
        self.template_uuid = template_uuid
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.base_url = "https://api.placid.app/api/rest"

    def _get_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    def _request_with_retry(
        self,
        method: str,
        url: str,
        json: dict | None = None,
        max_retries: int = 5,
    ) -> requests.Response:
        """Make request with exponential backoff on 429 errors."""
        send = requests.post if method == "POST" else requests.get
        kwargs = {"json": json} if method == "POST" else {}
        for attempt in range(max_retries):
            try:
                response = send(url, headers=self._get_headers(), timeout=30, **kwargs)
            except requests.RequestException as e:
                raise ServiceError(f"Placid request failed: {e}") from e
            if response.status_code != 429 or attempt == max_retries - 1:
                return response
            logger.warning(f"Placid rate limited, retrying in {2 ** attempt}s")
            time.sleep(2 ** attempt)
        return response

    def submit_render(self, layers: dict[str, dict], modifications: dict | None = None) -> int:
        """Submit a render job. Returns the Placid image id."""
        payload = {
            "create_now": False,
            "layers": layers,
        }
        if modifications:
            payload["modifications"] = modifications

        response = self._request_with_retry("POST", f"{self.base_url}/{self.template_uuid}", json=payload)
        if response.status_code >= 300:
            raise ServiceError(
                f"Placid submit failed ({response.status_code}): {response.text[:300]}",
                status_code=response.status_code,
            )
        image_id = response.json().get("id")
        if not image_id:
            raise ServiceError("Placid submit returned no id")
        return image_id

    def poll_job(self, image_id: int) -> tuple[str, str | None, str | None]:
        """Poll a single job. Returns (status, image_url, error)."""
        response = self._request_with_retry("GET", f"{self.base_url}/images/{image_id}")
        if response.status_code >= 300:
            return "error", None, f"poll failed ({response.status_code})"
        data = response.json()
        return data.get("status", "unknown"), data.get("image_url"), _join_errors(data.get("errors"))

    def wait_for_render(self, image_id: int) -> str:
        """Poll at a fixed interval until finished; return the rendered image URL."""
        for _ in range(self.max_poll_attempts):
            status, image_url, error = self.poll_job(image_id)
            if status == "finished" and image_url:
                return image_url
            if status == "error":
                raise ServiceError(f"Placid job failed: {error}")
            time.sleep(self.poll_interval)
        raise CompositeTimeout(f"Placid job {image_id} timed out")


def _join_errors(errors) -> str | None:
    if not errors:
        return None
    return "; ".join(str(e) for e in errors) if isinstance(errors, list) else str(errors)
