"""
Artifact Store
==============
Transient, run-scoped storage for files passed between stages.

Layout:
    <artifact_root>/<run_id>/<artifact_name>/<filename>

Contract:
    - ``upload`` copies a file in and returns its name, path, sha256 and size.
    - ``download`` copies it back out; a missing artifact raises
      ArtifactNotFoundError immediately (stages fail fast, never skip).
    - A stored artifact is read back byte-identical (sha256 verified).
    - ``purge`` removes everything for the run once the run ends.
"""
import hashlib
import logging
import os
import shutil

from deployer.core.errors import ArtifactNotFoundError
from deployer.models.messages import CoverageArtifact

logger = logging.getLogger(__name__)


def sha256_file(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


class ArtifactStore:
    """
    Filesystem-backed artifact store scoped to one pipeline run.

    Usage:
        store = ArtifactStore("/tmp/artifacts", run_id)
        artifact = store.upload("coverage-report", "app/coverage.xml")
        path = store.download("coverage-report", "/checkout")
    """

    def __init__(self, root: str, run_id: str) -> None:
        self.root = os.path.abspath(root)
        self.run_id = run_id
        self.run_dir = os.path.join(self.root, run_id)

    def _artifact_dir(self, name: str) -> str:
        if not name or "/" in name or name in (".", ".."):
            raise ValueError(f"Invalid artifact name: {name!r}")
        return os.path.join(self.run_dir, name)

    def exists(self, name: str) -> bool:
        d = self._artifact_dir(name)
        return os.path.isdir(d) and bool(os.listdir(d))

    def upload(self, name: str, source_path: str) -> CoverageArtifact:
        """
        Store ``source_path`` under ``name``.

        Raises
        ------
        ArtifactNotFoundError
            If ``source_path`` does not exist.
        """
        if not os.path.isfile(source_path):
            raise ArtifactNotFoundError(
                f"Cannot upload artifact '{name}': file not found",
                details={"artifact": name, "path": source_path},
            )

        dest_dir = self._artifact_dir(name)
        if os.path.exists(dest_dir):
            shutil.rmtree(dest_dir)
        os.makedirs(dest_dir)

        dest = os.path.join(dest_dir, os.path.basename(source_path))
        shutil.copy2(source_path, dest)

        artifact = CoverageArtifact(
            name=name,
            path=dest,
            sha256=sha256_file(dest),
            size_bytes=os.path.getsize(dest),
        )
        logger.info("Uploaded artifact '%s' (%d bytes)", name, artifact.size_bytes)
        return artifact

    def download(self, name: str, dest_dir: str) -> str:
        """
        Copy artifact ``name`` into ``dest_dir`` and return the new path.

        Raises
        ------
        ArtifactNotFoundError
            If the artifact was never uploaded for this run.
        """
        if not self.exists(name):
            raise ArtifactNotFoundError(
                f"Artifact '{name}' not found for run {self.run_id}",
                details={"artifact": name, "run_id": self.run_id},
            )

        src_dir = self._artifact_dir(name)
        filename = sorted(os.listdir(src_dir))[0]
        os.makedirs(dest_dir, exist_ok=True)
        dest = os.path.join(dest_dir, filename)
        shutil.copy2(os.path.join(src_dir, filename), dest)
        logger.info("Downloaded artifact '%s' to %s", name, dest)
        return dest

    def verify(self, artifact: CoverageArtifact, path: str) -> bool:
        """True when ``path`` has the same content the artifact was stored with."""
        return os.path.isfile(path) and sha256_file(path) == artifact.sha256

    def purge(self) -> None:
        if os.path.exists(self.run_dir):
            shutil.rmtree(self.run_dir)
            logger.debug("Purged artifacts for run %s", self.run_id)
