"""File stores that decide, per media type, where pulled content lands on disk."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

from hauler.oci import (
    ANNOTATION_TITLE,
    CHART_CONFIG,
    CHART_LAYER,
    DOCKER_CONFIG_JSON,
    DOCKER_LAYER,
    DOCKER_MANIFEST,
    DOCKER_MANIFEST_LIST,
    OCI_LAYER,
    OCI_MANIFEST,
    PROV_LAYER,
    Descriptor,
    verify_content,
)

Fn = Callable[[Descriptor], str]


@dataclass(frozen=True)
class _FixedName:
    """Mapper that places every descriptor under one file name."""

    filename: str

    def __call__(self, desc: Descriptor) -> str:
        return self.filename


def _layer_name(desc: Descriptor) -> str:
    return f"{desc.digest}.tar.gz"


def _chart_name(desc: Descriptor) -> str:
    return desc.annotations.get(ANNOTATION_TITLE, "chart.tar.gz")


def images() -> dict[str, Fn]:
    """Mappers that lay out an image as manifest.json, config.json and layer tarballs."""
    manifest_name = _FixedName("manifest.json")
    mapping: dict[str, Fn] = {}
    for media_type in (DOCKER_MANIFEST, DOCKER_MANIFEST_LIST, OCI_MANIFEST):
        mapping[media_type] = manifest_name
    for media_type in (OCI_LAYER, DOCKER_LAYER):
        mapping[media_type] = _layer_name
    mapping[DOCKER_CONFIG_JSON] = _FixedName("config.json")
    return mapping


def chart() -> dict[str, Fn]:
    """Mappers that lay out a chart as its archive and provenance file."""
    return {CHART_LAYER: _chart_name, PROV_LAYER: _FixedName("prov.json")}


def from_manifest(manifest: Mapping[str, Any], root: str | os.PathLike[str]) -> "MapperFileStore":
    """Choose a file store suited to the content a manifest describes."""
    config_type = (manifest.get("config") or {}).get("mediaType", "")
    if config_type in (DOCKER_CONFIG_JSON, OCI_MANIFEST):
        return MapperFileStore(root, images())
    if config_type in (CHART_LAYER, CHART_CONFIG):
        return MapperFileStore(root, chart())
    return MapperFileStore(root)


class MapperFileStore:
    """Writes content to files named by title annotation or by a media-type mapper.

    Content that has neither is checked and discarded.
    """

    def __init__(self, root: str | os.PathLike[str], mapper: Mapping[str, Fn] | None = None) -> None:
        self.root = Path(root) if str(root) else Path(".")
        self.mapper: dict[str, Fn] = dict(mapper or {})

    def _resolve(self, filename: str) -> Path:
        relative = Path(filename)
        if not filename or relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"path not allowed in file store: {filename!r}")
        return self.root / relative

    def write(self, desc: Descriptor, data: bytes) -> Path | None:
        """Write one blob; return the file written, or None if it was discarded."""
        title = desc.annotations.get(ANNOTATION_TITLE)
        if title:
            filename = title
        else:
            mapper_fn = self.mapper.get(desc.media_type)
            if mapper_fn is None:
                verify_content(desc, data)
                return None
            filename = mapper_fn(desc)

        verify_content(desc, data)
        path = self._resolve(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path