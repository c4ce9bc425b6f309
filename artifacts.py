# Doc-Pipeline/artifacts.py
"""Per-request bookkeeping of every file and directory a transformation creates.

A tracker is used as a context manager around one request::

    with TempArtifactTracker(strict=settings.strict_artifacts) as tracker:
        upload = tracker.track(upload_path)
        output = tracker.new_file(settings.output_dir, "merged", ".pdf")
        ...
        tracker.commit(output)

Whatever happens inside the block, every tracked path that was not committed
is deleted on the way out. At most one artifact is committed per request.
"""
import os
import shutil
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from errors import ArtifactCommitError

logger = logging.getLogger(__name__)

PENDING = "pending"
COMMITTED = "committed"
RELEASED = "released"


def build_filename(base_name, suffix, extension):
    """Generates a collision-free file name: ``<safe base>_<suffix>_<random hex><ext>``."""
    safe_base = "".join(c if c.isalnum() or c in ('_', '-') else '_' for c in str(base_name))
    safe_base = safe_base[:100] or "file"
    return f"{safe_base}_{suffix}_{uuid.uuid4().hex}{extension}"


@dataclass
class TempArtifact:
    path: Path
    state: str = PENDING

    @property
    def name(self):
        return self.path.name


def remove_path(path):
    """Removes a file or directory tree; missing paths are fine. Raises OSError on failure."""
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        os.remove(path)
    else:
        logger.debug(f"Cleanup requested but path not found: {path}")
        return False
    return True


class TempArtifactTracker:
    """Owns the temp artifacts of exactly one request."""

    def __init__(self, strict=True):
        self.strict = strict
        self._artifacts = []
        self._committed = None
        self.released_paths = []
        self.release_runs = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release_all()
        return False

    @property
    def artifacts(self):
        return tuple(self._artifacts)

    @property
    def committed(self):
        return self._committed

    def track(self, path) -> TempArtifact:
        artifact = TempArtifact(Path(path))
        self._artifacts.append(artifact)
        return artifact

    def new_file(self, directory, base_name, extension, suffix="tmp") -> TempArtifact:
        """Reserves (but does not create) a uniquely named file inside ``directory``."""
        return self.track(Path(directory) / build_filename(base_name, suffix, extension))

    def new_dir(self, directory, base_name) -> TempArtifact:
        """Creates and tracks a uniquely named scratch directory."""
        artifact = self.track(Path(directory) / build_filename(base_name, "work", ""))
        artifact.path.mkdir(parents=True, exist_ok=False)
        return artifact

    def commit(self, artifact: TempArtifact):
        """Marks ``artifact`` as the request's result so release_all() leaves it alone."""
        if artifact not in self._artifacts:
            raise ValueError(f"Cannot commit untracked path: {artifact.path}")
        if self._committed is artifact:
            return artifact
        if self._committed is not None:
            msg = f"Request already committed {self._committed.path}; refusing to commit {artifact.path}"
            if self.strict:
                raise ArtifactCommitError(msg)
            # Production: keep the first result, the second path is released with the rest.
            logger.error(msg)
            return self._committed
        artifact.state = COMMITTED
        self._committed = artifact
        return artifact

    def release_all(self):
        """Deletes every tracked, uncommitted path. Best effort: failures are logged, never raised."""
        self.release_runs += 1
        for artifact in reversed(self._artifacts):
            if artifact.state != PENDING:
                continue
            try:
                if remove_path(artifact.path):
                    logger.info(f"Removed temporary artifact: {artifact.path}")
                self.released_paths.append(artifact.path)
            except OSError as e:
                logger.warning(f"Could not remove temporary artifact {artifact.path}: {e}")
            artifact.state = RELEASED
