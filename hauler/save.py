"""Saving the content store to a compressed archive with an import manifest."""

from __future__ import annotations

import json
import logging
import os
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import zstandard

from hauler.flags import SaveOpts
from hauler.info import DEFAULT_TAG, _parse_reference
from hauler.oci import (
    ANNOTATION_IMAGE_NAME,
    BLOBS_DIR,
    INDEX_MEDIA_TYPES,
    MANIFEST_MEDIA_TYPES,
    Descriptor,
    Layout,
    parse_digest,
)

KIND_ANNOTATION_NAME = "kind"
KIND_ANNOTATION_IMAGE = "dev.cosignproject.cosign/image"
KIND_ANNOTATION_INDEX = "dev.cosignproject.cosign/imageIndex"

_DEFAULT_DOMAIN = "docker.io"
_LEGACY_DOMAIN = "index.docker.io"
_OFFICIAL_PREFIX = "library/"

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Platform:
    os: str = ""
    architecture: str = ""
    variant: str = ""

    def __str__(self) -> str:
        return "/".join(part for part in (self.os, self.architecture, self.variant) if part)


def _parse_platform(text: str) -> _Platform:
    if not text:
        return _Platform()
    parts = text.split(":", 1)[0].split("/")
    if len(parts) > 3:
        raise ValueError(f"too many slashes in platform spec: {text}")
    parts += [""] * (3 - len(parts))
    return _Platform(*parts)


def _blob_path(digest: str) -> str:
    algorithm, encoded = parse_digest(digest)
    return f"{BLOBS_DIR}/{algorithm}/{encoded}"


def _familiar_tag(refname: str) -> str:
    """Return the short repo:tag form a container runtime shows for a reference."""
    name = refname
    tag = ""
    colon = name.rfind(":")
    if colon > name.rfind("/"):
        name, tag = name[:colon], name[colon + 1:]
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        domain, path = first, rest
    else:
        domain, path = _DEFAULT_DOMAIN, name
    if domain == _LEGACY_DOMAIN:
        domain = _DEFAULT_DOMAIN
    if domain == _DEFAULT_DOMAIN and "/" not in path:
        path = _OFFICIAL_PREFIX + path
    if path != path.lower():
        raise ValueError(f"repository name must be lowercase: {refname}")

    if domain == _DEFAULT_DOMAIN:
        if path.startswith(_OFFICIAL_PREFIX) and path.count("/") == 1:
            path = path[len(_OFFICIAL_PREFIX):]
        familiar = path
    else:
        familiar = f"{domain}/{path}"
    return f"{familiar}:{tag or DEFAULT_TAG}"


@dataclass
class Exports:
    """Import records for images, one per manifest digest, in first-seen order."""

    digests: list[str] = field(default_factory=list)
    records: dict[str, dict[str, Any]] = field(default_factory=dict)

    def record(self, layout: Layout, desc: Descriptor, refname: str) -> None:
        """Record the image behind desc, adding refname to its tags if it is tagged."""
        ref = _parse_reference(refname)
        manifest = json.loads(layout.fetch(desc))
        config_digest = manifest["config"]["digest"]

        entry = self.records.get(desc.digest)
        if entry is None:
            self.digests.append(desc.digest)
            entry = {
                "Config": _blob_path(config_digest),
                "RepoTags": [],
                "Layers": [_blob_path(layer["digest"]) for layer in manifest.get("layers") or []],
            }

        if not ref.digest:
            tags = set(entry["RepoTags"])
            tags.add(_familiar_tag(refname))
            entry["RepoTags"] = sorted(tags)

        _log.debug("image [%s]: type=%s, size=%d", ref.name, desc.media_type, desc.size)
        self.records[desc.digest] = entry

    def describe(self) -> list[dict[str, Any]]:
        """Return the records in the order their digests were first seen."""
        return [self.records[digest] for digest in self.digests]


def _record_index(
    exports: Exports, layout: Layout, desc: Descriptor, ref_name: str, target: _Platform
) -> None:
    _log.debug(
        "index [%s]: digest=%s, type=%s, size=%d", ref_name, desc.digest, desc.media_type, desc.size
    )
    if not str(target):
        _log.warning(
            "index [%s]: provide an export platform to prevent potential platform mismatch on import",
            ref_name,
        )
    index = json.loads(layout.fetch(desc))
    for entry in index.get("manifests") or []:
        child = Descriptor.from_dict(entry)
        if child.media_type not in MANIFEST_MEDIA_TYPES:
            continue
        plat = child.platform or {}
        os_name, arch = plat.get("os", ""), plat.get("architecture", "")
        if str(target) and (arch != target.architecture or os_name != target.os):
            _log.warning(
                "index [%s]: digest=%s, platform=%s/%s: does not match the supplied platform, skipping",
                ref_name, desc.digest, os_name, arch,
            )
            continue
        if arch == "unknown" and os_name == "unknown":
            _log.warning(
                "index [%s]: digest=%s, platform=%s/%s: skipping 'unknown/unknown' platform",
                ref_name, desc.digest, os_name, arch,
            )
            continue
        exports.record(layout, child, ref_name)


def write_exports_manifest(directory: str | os.PathLike[str], platform: str) -> Exports:
    """Write manifest.json describing the store's images for a container runtime import."""
    target = _parse_platform(platform)
    layout = Layout(directory)
    exports = Exports()

    for _, desc in list(layout.walk()):
        _log.debug("descriptor [%s] >>> %s", desc.digest, desc.media_type)
        artifact = desc.artifact_type
        if artifact and artifact not in MANIFEST_MEDIA_TYPES and artifact not in INDEX_MEDIA_TYPES:
            _log.debug("descriptor [%s] <<< SKIPPING ARTIFACT (%r)", desc.digest, artifact)
            continue
        kind = desc.annotations.get(KIND_ANNOTATION_NAME)
        ref_name = desc.annotations.get(ANNOTATION_IMAGE_NAME)
        if kind is None or ref_name is None:
            continue
        if kind == KIND_ANNOTATION_IMAGE:
            exports.record(layout, desc, ref_name)
        elif kind == KIND_ANNOTATION_INDEX:
            _record_index(exports, layout, desc, ref_name, target)
        else:
            _log.debug("descriptor [%s] <<< SKIPPING KIND (%r)", desc.digest, kind)

    text = json.dumps(exports.describe(), separators=(",", ":")) + "\n"
    (Path(directory) / "manifest.json").write_text(text)
    return exports


def _write_tar_zst(source: str, output: str) -> None:
    def exclude_output(info: tarfile.TarInfo) -> tarfile.TarInfo | None:
        path = os.path.abspath(os.path.join(source, info.name))
        return None if path == output else info

    with open(output, "wb") as handle:
        compressor = zstandard.ZstdCompressor()
        with compressor.stream_writer(handle, closefd=False) as writer:
            with tarfile.open(fileobj=writer, mode="w|") as archive:
                archive.add(source, arcname=".", filter=exclude_output)


def save_cmd(opts: SaveOpts, output_file: str) -> str:
    """Archive the store as a zstd-compressed tarball; return the archive's path."""
    output = os.path.abspath(output_file)
    store = os.path.abspath(opts.store_dir)
    if not os.path.isdir(store):
        raise FileNotFoundError(f"store directory not found: {opts.store_dir}")

    write_exports_manifest(store, opts.platform)
    _write_tar_zst(store, output)
    _log.info("saved store [%s] -> [%s]", opts.store_dir, output)
    return output