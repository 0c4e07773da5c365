"""S3-backed asset store."""

import mimetypes
from pathlib import Path

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import StorageError


class S3AssetStore:
    """Upload, host and delete job assets in an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        public_base_url: str | None = None,
        url_expiry: int = 6 * 3600,
    ):
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.url_expiry = url_expiry
        self._s3 = boto3.client("s3", region_name=region)

    def upload(self, local_path: Path, key: str) -> str:
        """Upload a file under key (overwriting) and return a fetchable URL."""
        content_type = mimetypes.guess_type(str(local_path))[0] or "application/octet-stream"
        try:
            self._s3.upload_file(
                str(local_path),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload {key}: {e}") from e
        return self.url_for(key)

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        try:
            return self._s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.url_expiry,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to sign URL for {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def download(self, key: str, out_path: Path) -> Path:
        try:
            self._s3.download_file(self.bucket, key, str(out_path))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to download {key}: {e}") from e
        return out_path


def download_url(url: str, out_path: Path, timeout: float = 60) -> Path:
    """Fetch a URL to a local file."""
    headers = {
        "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    }
    try:
        response = requests.get(url, headers=headers, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        status = e.response.status_code if e.response is not None else None
        raise StorageError(f"Failed to download {url}: {e}", status_code=status) from e
    Path(out_path).write_bytes(response.content)
    return Path(out_path)
