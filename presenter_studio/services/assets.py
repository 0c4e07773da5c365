"""Asset lifecycle: every hosted file a job creates is eventually promoted or discarded."""

import logging
import threading
from pathlib import Path
from typing import Protocol

from ..errors import AssetStateError, StorageError
from ..models.asset import AssetKind, AssetStatus, CandidateAsset
from ..utils import image_size, to_slug

logger = logging.getLogger(__name__)


class AssetStore(Protocol):
    def upload(self, local_path: Path, key: str) -> str: ...
    def delete(self, key: str) -> None: ...


class AssetLifecycleManager:
    """Track one job's hosted assets.

    Remote names are scoped by job, stage and attempt so concurrent jobs never collide.
    Discards are best-effort: a failed delete is logged, never raised.
    """

    def __init__(self, store: AssetStore, job_id: str, prefix: str = "presenter-studio"):
        self.store = store
        self.job_id = job_id
        self.prefix = prefix.strip("/")
        self.assets: list[CandidateAsset] = []
        self.closed = False
        self._lock = threading.Lock()

    def key_for(self, stage: str, attempt: int, kind: AssetKind, suffix: str, name: str | None = None) -> str:
        leaf = name or f"a{attempt:02d}-{kind.value}"
        return f"{self.prefix}/{to_slug(self.job_id)}/{stage}/{leaf}{suffix}"

    def register(
        self,
        local_path: Path,
        stage: str,
        attempt: int = 0,
        kind: AssetKind = AssetKind.CANDIDATE,
        name: str | None = None,
    ) -> CandidateAsset:
        """Upload a local file and start tracking it.

        Raises:
            StorageError: If the upload fails (nothing is tracked in that case).
            AssetStateError: If the job already closed its assets.
        """
        local_path = Path(local_path)
        width, height = image_size(local_path)
        key = self.key_for(stage, attempt, kind, local_path.suffix or ".png", name)
        with self._lock:
            if self.closed:
                raise AssetStateError(f"[{self.job_id}] assets closed, not uploading {key}")
            locator = self.store.upload(local_path, key)
            asset = CandidateAsset(
                storage_id=key,
                locator=locator,
                width=width,
                height=height,
                stage=stage,
                attempt=attempt,
                kind=kind,
                local_path=local_path,
            )
            self.assets.append(asset)
        logger.info(f"[{self.job_id}] registered {kind.value} {key} ({width}x{height})")
        return asset

    def track_reference(self, local_path: Path, locator: str, storage_id: str, stage: str) -> CandidateAsset:
        """Track an externally hosted file. References are never promoted or deleted."""
        width, height = image_size(local_path)
        asset = CandidateAsset(
            storage_id=storage_id,
            locator=locator,
            width=width,
            height=height,
            stage=stage,
            attempt=0,
            kind=AssetKind.REFERENCE,
            local_path=Path(local_path),
        )
        self.assets.append(asset)
        return asset

    def promote(self, asset: CandidateAsset) -> None:
        """Mark an asset as surviving the job. Promoting twice is a no-op."""
        if asset.kind == AssetKind.REFERENCE:
            return
        if asset.status == AssetStatus.DISCARDED:
            raise AssetStateError(f"Cannot promote discarded asset {asset.storage_id}")
        if asset.status == AssetStatus.PENDING:
            asset.status = AssetStatus.PROMOTED
            logger.info(f"[{self.job_id}] promoted {asset.storage_id}")

    def discard(self, asset: CandidateAsset) -> None:
        """Delete a remote asset exactly once; storage failures are only logged."""
        if asset.kind == AssetKind.REFERENCE or asset.status == AssetStatus.DISCARDED:
            return
        if asset.status == AssetStatus.PROMOTED:
            raise AssetStateError(f"Cannot discard promoted asset {asset.storage_id}")

        asset.status = AssetStatus.DISCARDED
        try:
            self.store.delete(asset.storage_id)
            logger.info(f"[{self.job_id}] discarded {asset.storage_id}")
        except StorageError as e:
            logger.warning(f"[{self.job_id}] delete failed for {asset.storage_id}: {e}")

    def discard_pending(self, stage: str | None = None) -> int:
        """Discard every pending asset (optionally of one stage). Returns how many."""
        pending = [
            a for a in self.assets
            if a.is_pending and a.kind != AssetKind.REFERENCE and (stage is None or a.stage == stage)
        ]
        for asset in pending:
            self.discard(asset)
        return len(pending)

    def close(self) -> int:
        """Discard everything pending and refuse later uploads (abandoned calls may still finish)."""
        with self._lock:
            self.closed = True
        return self.discard_pending()

    def registered(self, stage: str | None = None, kind: AssetKind | None = None) -> list[CandidateAsset]:
        return [
            a for a in self.assets
            if (stage is None or a.stage == stage) and (kind is None or a.kind == kind)
        ]

    def promoted(self) -> list[CandidateAsset]:
        return [a for a in self.assets if a.status == AssetStatus.PROMOTED]
