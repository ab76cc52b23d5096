"""Packaging of local source code into a base64 tar.gz archive."""

import base64
import logging
import tarfile
import time
from collections.abc import Callable
from pathlib import Path

from kflow.core.errors import ArtifactError
from kflow.models.job import ArtifactReference

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = ".kflow-artifact-"
ARCHIVE_SUFFIX = ".tar.gz"


class ArtifactPackager:
    """Compresses a script's directory into a tar.gz archive and encodes it.

    The archive is written next to the sources with a millisecond timestamp in
    its name, so concurrent runs from the same directory do not collide.

    Example:
        ```python
        packager = ArtifactPackager()
        archive = packager.package_to_archive("train/main.py")
        payload = packager.read_encoded(archive)
        ```
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def _exclude_artifacts(self, tarinfo: tarfile.TarInfo) -> tarfile.TarInfo | None:
        """Keep earlier archives (and the one being written) out of the tarball."""
        if Path(tarinfo.name).name.startswith(ARCHIVE_PREFIX):
            return None
        return tarinfo

    def package_to_archive(self, path: str | Path) -> Path:
        """Compress the directory containing ``path`` (or ``path`` itself if a directory).

        Args:
            path: Source file or directory

        Returns:
            Path of the created archive

        Raises:
            FileNotFoundError: If ``path`` does not exist
            ArtifactError: If the archive cannot be written
        """
        source = Path(path).resolve()
        if not source.exists():
            raise FileNotFoundError(f"Source path does not exist: {source}")

        source_dir = source if source.is_dir() else source.parent
        archive_path = source_dir / f"{ARCHIVE_PREFIX}{int(self._clock() * 1000)}{ARCHIVE_SUFFIX}"

        try:
            with tarfile.open(archive_path, "w:gz") as tar:
                tar.add(source_dir, arcname=".", filter=self._exclude_artifacts)
        except (OSError, tarfile.TarError) as e:
            archive_path.unlink(missing_ok=True)
            raise ArtifactError(f"Failed to archive {source_dir}: {e}") from e

        logger.info(f"Packaged {source_dir} into {archive_path.name} ({archive_path.stat().st_size} bytes)")
        return archive_path

    def read_encoded(self, archive_path: str | Path) -> str:
        """Read an archive and return its contents base64-encoded."""
        return base64.b64encode(Path(archive_path).read_bytes()).decode("ascii")

    def package(self, path: str | Path, config_map_name: str) -> ArtifactReference:
        """Package ``path`` and encode the archive for the ConfigMap ``config_map_name``."""
        archive_path = self.package_to_archive(path)
        return ArtifactReference(
            archive_path=archive_path,
            base64_payload=self.read_encoded(archive_path),
            config_map_name=config_map_name,
        )
