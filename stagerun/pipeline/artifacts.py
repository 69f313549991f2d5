"""
Run-scoped artifact namespace.

Stages publish named outputs here on success; later stages resolve them by
logical name instead of reconstructing file-system paths. A namespace
belongs to exactly one run and is cleared when the run completes.
"""
import hashlib
import shutil
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from stagerun.core.errors import ArtifactNotFound
from stagerun.core.logging import get_logger

logger = get_logger("pipeline.artifacts")

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class ArtifactRef:
    """A named pointer to a build output."""
    name: str
    path: str
    checksum: str  # "sha256:<hex>"
    size: int
    stage: Optional[str] = None  # None when supplied from outside the pipeline
    published_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _hash_file(path: Path, digest) -> int:
    size = 0
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
            size += len(chunk)
    return size


def compute_checksum(path: Union[str, Path]) -> tuple[str, int]:
    """
    Checksum a file, or a directory tree in sorted relative-path order.

    Returns:
        Tuple of ("sha256:<hex>", total size in bytes)
    """
    path = Path(path)
    digest = hashlib.sha256()
    if path.is_file():
        size = _hash_file(path, digest)
    elif path.is_dir():
        size = 0
        for child in sorted(p for p in path.rglob("*") if p.is_file()):
            digest.update(child.relative_to(path).as_posix().encode("utf-8"))
            digest.update(b"\0")
            size += _hash_file(child, digest)
    else:
        raise FileNotFoundError(f"Artifact path does not exist: {path}")
    return f"sha256:{digest.hexdigest()}", size


class ArtifactNamespace:
    """
    Mapping of artifact name to ArtifactRef for a single run.

    Publishing a name that already exists replaces it (last writer wins).
    """

    def __init__(self, base_dir: Union[str, Path] = "."):
        self.base_dir = Path(base_dir)
        self._refs: Dict[str, ArtifactRef] = {}

    def _absolute(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        if not path.is_absolute():
            path = self.base_dir / path
        return path.resolve()

    def publish(self, name: str, path: Union[str, Path], stage: Optional[str] = None) -> ArtifactRef:
        """
        Checksum `path` and store it under `name`.

        Raises:
            FileNotFoundError: If the path does not exist
        """
        absolute = self._absolute(path)
        checksum, size = compute_checksum(absolute)
        ref = ArtifactRef(
            name=name,
            path=str(absolute),
            checksum=checksum,
            size=size,
            stage=stage,
            published_at=time.time(),
        )
        if name in self._refs:
            logger.info(f"Artifact '{name}' replaced by stage {stage}")
        self._refs[name] = ref
        logger.debug(f"Published artifact {name} -> {ref.path} ({checksum})")
        return ref

    def resolve(self, name: str) -> ArtifactRef:
        """Get an artifact by logical name."""
        try:
            return self._refs[name]
        except KeyError:
            raise ArtifactNotFound(name) from None

    def has(self, name: str) -> bool:
        return name in self._refs

    def names(self) -> List[str]:
        return list(self._refs)

    def snapshot(self) -> Dict[str, ArtifactRef]:
        """Copy of the current mapping; refs are immutable."""
        return dict(self._refs)

    def verify(self, name: str) -> bool:
        """Check the artifact on disk still matches its published checksum."""
        ref = self.resolve(name)
        try:
            checksum, _ = compute_checksum(ref.path)
        except FileNotFoundError:
            return False
        return checksum == ref.checksum

    def retain(self, dest_dir: Union[str, Path]) -> Dict[str, str]:
        """Copy every artifact under dest_dir/<name>/; returns name -> copy path."""
        dest_dir = Path(dest_dir)
        copies = {}
        for name, ref in self._refs.items():
            source = Path(ref.path)
            target = dest_dir / name / source.name
            target.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, target, dirs_exist_ok=True)
            elif source.is_file():
                shutil.copy2(source, target)
            else:
                logger.warning(f"Artifact '{name}' vanished before retention: {source}")
                continue
            copies[name] = str(target)
        logger.info(f"Retained {len(copies)} artifacts under {dest_dir}")
        return copies

    def clear(self) -> None:
        self._refs.clear()

    def __len__(self) -> int:
        return len(self._refs)

    def __contains__(self, name: str) -> bool:
        return name in self._refs
