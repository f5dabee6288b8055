"""OCI image layouts on disk and copying content graphs between targets."""

from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Mapping, Protocol

OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_LAYER = "application/vnd.oci.image.layer.v1.tar+gzip"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_CONFIG_JSON = "application/vnd.docker.container.image.v1+json"
DOCKER_LAYER = "application/vnd.docker.image.rootfs.diff.tar.gzip"
CHART_CONFIG = "application/vnd.cncf.helm.config.v1+json"
CHART_LAYER = "application/vnd.cncf.helm.chart.content.v1.tar+gzip"
PROV_LAYER = "application/vnd.cncf.helm.chart.provenance.v1.prov"

ANNOTATION_REF_NAME = "org.opencontainers.image.ref.name"
ANNOTATION_TITLE = "org.opencontainers.image.title"
ANNOTATION_IMAGE_NAME = "io.containerd.image.name"

MANIFEST_MEDIA_TYPES = frozenset({OCI_MANIFEST, DOCKER_MANIFEST})
INDEX_MEDIA_TYPES = frozenset({OCI_IMAGE_INDEX, DOCKER_MANIFEST_LIST})

LAYOUT_FILE = "oci-layout"
INDEX_FILE = "index.json"
BLOBS_DIR = "blobs"

_DIGEST_RE = re.compile(r"^(?P<alg>[a-z0-9]+(?:[+._-][a-z0-9]+)*):(?P<hex>[a-zA-Z0-9=_-]+)$")


def parse_digest(digest: str) -> tuple[str, str]:
    """Split a digest into algorithm and encoded part, validating its form."""
    match = _DIGEST_RE.match(digest or "")
    if not match:
        raise ValueError(f"invalid digest: {digest!r}")
    return match["alg"], match["hex"]


def compute_digest(data: bytes, algorithm: str = "sha256") -> str:
    """Return the content digest of data."""
    return f"{algorithm}:{hashlib.new(algorithm, data).hexdigest()}"


def verify_content(desc: "Descriptor", data: bytes) -> None:
    """Raise ValueError unless data matches the descriptor's size and digest."""
    algorithm, _ = parse_digest(desc.digest)
    if desc.size != len(data):
        raise ValueError(f"size mismatch for {desc.digest}: expected {desc.size}, got {len(data)}")
    try:
        actual = compute_digest(data, algorithm)
    except ValueError:
        raise ValueError(f"unsupported digest algorithm: {algorithm}") from None
    if actual != desc.digest:
        raise ValueError(f"digest mismatch: expected {desc.digest}, got {actual}")


@dataclass
class Descriptor:
    """A content descriptor pointing at a blob."""

    media_type: str
    digest: str
    size: int
    annotations: dict[str, str] = field(default_factory=dict)
    platform: dict[str, Any] | None = None
    artifact_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "mediaType": self.media_type,
            "digest": self.digest,
            "size": self.size,
        }
        if self.artifact_type:
            data["artifactType"] = self.artifact_type
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        if self.platform:
            data["platform"] = dict(self.platform)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Descriptor":
        return cls(
            media_type=data.get("mediaType", ""),
            digest=data["digest"],
            size=int(data.get("size", 0)),
            annotations=dict(data.get("annotations") or {}),
            platform=dict(data["platform"]) if data.get("platform") else None,
            artifact_type=data.get("artifactType", ""),
        )


class Target(Protocol):
    """Anything content can be pushed into."""

    def write(self, desc: Descriptor, data: bytes) -> Any: ...


def _children(desc: Descriptor, data: bytes) -> list[Descriptor]:
    if desc.media_type in MANIFEST_MEDIA_TYPES:
        manifest = json.loads(data)
        found = []
        if manifest.get("config"):
            found.append(Descriptor.from_dict(manifest["config"]))
        found.extend(Descriptor.from_dict(layer) for layer in manifest.get("layers") or [])
        return found
    if desc.media_type in INDEX_MEDIA_TYPES:
        index = json.loads(data)
        return [Descriptor.from_dict(m) for m in index.get("manifests") or []]
    return []


class Layout:
    """An OCI image layout directory: blobs addressed by digest and an index."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        layout_file = self.root / LAYOUT_FILE
        if not layout_file.exists():
            layout_file.write_text(json.dumps({"imageLayoutVersion": "1.0.0"}))
        if not (self.root / INDEX_FILE).exists():
            self._write_index({"schemaVersion": 2, "manifests": []})

    def _blob_path(self, digest: str) -> Path:
        algorithm, encoded = parse_digest(digest)
        return self.root / BLOBS_DIR / algorithm / encoded

    def _read_index(self) -> dict[str, Any]:
        return json.loads((self.root / INDEX_FILE).read_text())

    def _write_index(self, index: Mapping[str, Any]) -> None:
        self._atomic_write(self.root / INDEX_FILE, json.dumps(index).encode())

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def walk(self) -> Iterator[tuple[str, Descriptor]]:
        """Yield (reference, descriptor) for every entry of the index."""
        for entry in self._read_index().get("manifests") or []:
            desc = Descriptor.from_dict(entry)
            yield desc.annotations.get(ANNOTATION_REF_NAME, desc.digest), desc

    def exists(self, desc: Descriptor) -> bool:
        return self._blob_path(desc.digest).is_file()

    def fetch(self, desc: Descriptor) -> bytes:
        """Return the bytes of the blob the descriptor points at."""
        try:
            return self._blob_path(desc.digest).read_bytes()
        except FileNotFoundError:
            raise KeyError(f"blob not found: {desc.digest}") from None

    def write(self, desc: Descriptor, data: bytes) -> Descriptor:
        """Store a blob after checking it against its descriptor."""
        verify_content(desc, data)
        path = self._blob_path(desc.digest)
        if not path.exists():
            self._atomic_write(path, data)
        return desc

    def add_blob(
        self,
        data: bytes,
        media_type: str,
        annotations: Mapping[str, str] | None = None,
    ) -> Descriptor:
        """Store data as a blob and return its descriptor."""
        desc = Descriptor(
            media_type=media_type,
            digest=compute_digest(data),
            size=len(data),
            annotations=dict(annotations or {}),
        )
        return self.write(desc, data)

    def add_to_index(self, desc: Descriptor) -> None:
        """Record a descriptor in the index, replacing one with the same reference."""
        index = self._read_index()
        entry = desc.to_dict()
        ref = desc.annotations.get(ANNOTATION_REF_NAME)
        kept = [
            existing
            for existing in index.get("manifests") or []
            if existing != entry
            and not (ref and (existing.get("annotations") or {}).get(ANNOTATION_REF_NAME) == ref)
        ]
        kept.append(entry)
        index["manifests"] = kept
        self._write_index(index)

    def resolve(self, reference: str) -> Descriptor:
        """Find the index entry for a reference name or digest."""
        for ref, desc in self.walk():
            if ref == reference or desc.digest == reference:
                return desc
        raise KeyError(f"reference not found: {reference}")

    def _push_graph(self, desc: Descriptor, target: Target, seen: set[str]) -> None:
        if desc.digest in seen:
            return
        seen.add(desc.digest)
        data = self.fetch(desc)
        for child in _children(desc, data):
            self._push_graph(child, target, seen)
        target.write(desc, data)

    def _copy_root(self, desc: Descriptor, target: Target) -> Descriptor:
        self._push_graph(desc, target, set())
        if isinstance(target, Layout):
            target.add_to_index(desc)
        return desc

    def copy(self, reference: str, target: Target) -> Descriptor:
        """Copy the graph under one reference into target; return its root."""
        return self._copy_root(self.resolve(reference), target)

    def copy_all(self, target: Target) -> list[Descriptor]:
        """Copy every graph in the index into target."""
        return [self._copy_root(desc, target) for _, desc in list(self.walk())]