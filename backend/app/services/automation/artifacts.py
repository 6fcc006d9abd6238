"""
Artifact storage for webform jobs.

Artifacts are addressed by job id and attempt; the store returns a path
and a sha256 per artifact so the job result can reference them.
"""
import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from ...config import EngineSettings, get_settings

logger = logging.getLogger(__name__)


class ArtifactStore(ABC):

    @abstractmethod
    def put(self, job_id: str, name: str, data: bytes) -> Dict[str, str]:
        """Store one artifact. Returns {"path": ..., "sha256": ...}."""


class LocalArtifactStore(ArtifactStore):
    """Filesystem store under ARTIFACT_DIR/<job_id>/."""

    def __init__(self, root: Optional[str] = None, settings: Optional[EngineSettings] = None):
        settings = settings or get_settings()
        self.root = Path(root or settings.artifact_dir)

    def put(self, job_id: str, name: str, data: bytes) -> Dict[str, str]:
        folder = self.root / job_id
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / name
        path.write_bytes(data)
        digest = hashlib.sha256(data).hexdigest()
        logger.debug(f"Artifact {path} written ({len(data)} bytes)")
        return {"path": str(path), "sha256": digest}
