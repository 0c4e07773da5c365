"""Runway image generation client (gen4_image, task-based with polling)."""

import base64
import logging
import time
from pathlib import Path

import requests

from ..errors import GenerationFailed, GenerationTimeout, ServiceError
from ..models.generation import GenerationRequest

logger = logging.getLogger(__name__)

# Output ratio per requested aspect ratio
RUNWAY_RATIOS = {
    "16:9": "1280:720",
    "1:1": "1024:1024",
    "9:16": "720:1280",
    "4:3": "1024:768",
}


class RunwayClient:
    """Client for generating images via Runway's text_to_image task API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gen4_image",
        poll_interval: float = 2.0,
        max_poll_attempts: int = 120,
    ):
        self.api_key = api_key
        self.model = model
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.base_url = "https://api.dev.runwayml.com/v1"
        self.version = "2024-11-06"

    def _get_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "X-Runway-Version": self.version,
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
        response = None
        for attempt in range(max_retries):
            try:
                if method == "POST":
                    response = requests.post(url, json=json, headers=self._get_headers(), timeout=30)
                else:
                    response = requests.get(url, headers=self._get_headers(), timeout=20)
            except requests.RequestException as e:
                raise ServiceError(f"Runway request failed: {e}") from e

            if response.status_code == 429:
                wait_time = 2 ** attempt
                logger.warning(f"Runway rate limited (attempt {attempt + 1}/{max_retries}), retrying in {wait_time}s")
                time.sleep(wait_time)
                continue

            return response

        return response

    def _raise_for_status(self, response: requests.Response, label: str) -> dict:
        if response.status_code >= 300:
            raise ServiceError(
                f"{label} failed ({response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ServiceError(f"{label} returned malformed JSON") from e

    def create_ephemeral_upload(self, file_path: Path) -> str:
        """Upload a local file for use as a reference. Returns a runway:// URI."""
        file_path = Path(file_path)
        response = self._request_with_retry(
            "POST",
            f"{self.base_url}/uploads",
            json={"filename": file_path.name, "type": "ephemeral"},
        )
        data = self._raise_for_status(response, "Runway upload init")

        upload_url = data.get("uploadUrl")
        fields = data.get("fields")
        runway_uri = data.get("runwayUri")
        if not upload_url or not fields or not runway_uri:
            raise ServiceError("Runway upload init returned incomplete response")

        try:
            with open(file_path, "rb") as f:
                upload = requests.post(
                    upload_url,
                    data=fields,
                    files={"file": (file_path.name, f)},
                    timeout=60,
                )
        except requests.RequestException as e:
            raise ServiceError(f"Runway upload failed: {e}") from e
        if upload.status_code >= 300:
            raise ServiceError(f"Runway upload failed ({upload.status_code})", status_code=upload.status_code)

        return runway_uri

    def submit_text_to_image(
        self,
        prompt: str,
        references: list[dict],
        ratio: str,
        seed: int | None = None,
    ) -> str:
        """Submit a generation task. Returns the task id."""
        payload = {
            "model": self.model,
            "promptText": prompt[:1000],
            "ratio": ratio,
        }
        if seed is not None:
            payload["seed"] = seed
        if references:
            payload["referenceImages"] = references

        response = self._request_with_retry("POST", f"{self.base_url}/text_to_image", json=payload)
        data = self._raise_for_status(response, "Runway text_to_image")
        task_id = data.get("id")
        if not task_id:
            raise ServiceError("Runway text_to_image returned no task id")
        return task_id

    def poll_task(self, task_id: str) -> tuple[str, str | None, str | None]:
        """Poll a single task. Returns (status, output_uri, failure_code)."""
        response = self._request_with_retry("GET", f"{self.base_url}/tasks/{task_id}")
        data = self._raise_for_status(response, "Runway task poll")

        status = str(data.get("status") or "").upper()
        output = data.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        failure = data.get("failureCode") or data.get("failure") or data.get("error")
        return status, output, failure

    def wait_for_task(self, task_id: str) -> str:
        """Poll at a fixed interval until SUCCEEDED/FAILED; return the output URI."""
        for _ in range(self.max_poll_attempts):
            time.sleep(self.poll_interval)
            status, output, failure = self.poll_task(task_id)
            if status == "SUCCEEDED":
                if not output:
                    raise GenerationFailed("Runway task succeeded but returned no output", code="NO_OUTPUT")
                return output
            if status in ("FAILED", "CANCELLED"):
                raise GenerationFailed(f"Runway task failed: {failure or status}", code=str(failure or status))
        raise GenerationTimeout(f"Runway task {task_id} timed out", code="POLL_TIMEOUT")

    def generate(self, request: GenerationRequest, out_path: Path) -> Path:
        """Run one generation end to end and write the image to out_path."""
        references = []
        for ref in request.references:
            uri = self.create_ephemeral_upload(ref.path) if ref.path else ref.locator
            if not uri:
                raise ServiceError(f"Reference {ref.tag} has neither path nor locator")
            references.append({"uri": uri, "tag": ref.tag})

        ratio = RUNWAY_RATIOS.get(request.aspect_ratio, RUNWAY_RATIOS["16:9"])
        task_id = self.submit_text_to_image(request.prompt, references, ratio, request.seed)
        logger.info(f"Runway task {task_id} submitted (ratio={ratio}, seed={request.seed})")

        output = self.wait_for_task(task_id)
        return self._download_output(output, Path(out_path))

    def _download_output(self, uri: str, out_path: Path) -> Path:
        if uri.startswith("data:image/"):
            out_path.write_bytes(base64.b64decode(uri.split(",", 1)[1]))
            return out_path
        if not uri.startswith(("http://", "https://")):
            raise ServiceError(f"Unsupported Runway output uri: {uri[:50]}")
        try:
            response = requests.get(uri, timeout=30)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ServiceError(f"Runway output download failed: {e}") from e
        out_path.write_bytes(response.content)
        return out_path
