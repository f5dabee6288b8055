"""Listing of what the content store holds."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from tabulate import tabulate

from hauler.flags import InfoOpts
from hauler.oci import (
    ANNOTATION_IMAGE_NAME,
    ANNOTATION_REF_NAME,
    CHART_CONFIG,
    INDEX_MEDIA_TYPES,
    MANIFEST_MEDIA_TYPES,
    Descriptor,
    Layout,
    parse_digest,
)

FILE_LOCAL_CONFIG = "application/vnd.content.hauler.file.local.config.v1+json"
FILE_HTTP_CONFIG = "application/vnd.content.hauler.file.http.config.v1+json"

DEFAULT_TAG = "latest"

_KIND_TYPES = {
    "dev.cosignproject.cosign/sigs": "sigs",
    "dev.cosignproject.cosign/atts": "atts",
    "dev.cosignproject.cosign/sboms": "sbom",
}

_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
_REPOSITORY_RE = re.compile(rf"^{_COMPONENT}(?:/{_COMPONENT})*$")
_TAG_RE = re.compile(r"^\w[\w.-]{0,127}$")
_REGISTRY_RE = re.compile(r"^[A-Za-z0-9.-]+(?::[0-9]+)?$")

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Reference:
    registry: str
    repository: str
    tag: str = ""
    digest: str = ""

    @property
    def identifier(self) -> str:
        return self.digest or self.tag

    @property
    def name(self) -> str:
        prefix = f"{self.registry}/" if self.registry else ""
        suffix = f"@{self.digest}" if self.digest else f":{self.tag}"
        return f"{prefix}{self.repository}{suffix}"


def _parse_reference(ref: str) -> _Reference:
    """Parse an image reference; raise ValueError if it is malformed."""
    name, has_digest, digest = ref.partition("@")
    if has_digest:
        parse_digest(digest)
    colon = name.rfind(":")
    tag = ""
    if colon > name.rfind("/"):
        name, tag = name[:colon], name[colon + 1:]
    if has_digest:
        tag = ""
    else:
        tag = tag or DEFAULT_TAG
        if not _TAG_RE.match(tag):
            raise ValueError(f"invalid tag in reference: {ref!r}")

    registry = ""
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        if not _REGISTRY_RE.match(first):
            raise ValueError(f"invalid registry in reference: {ref!r}")
        registry, name = first, rest
    if not _REPOSITORY_RE.match(name):
        raise ValueError(f"invalid repository in reference: {ref!r}")
    return _Reference(registry, name, tag, digest if has_digest else "")


@dataclass
class Item:
    """One row of the store listing."""

    reference: str
    type: str
    platform: str
    layers: int
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "Reference": self.reference,
            "Type": self.type,
            "Platform": self.platform,
            "Layers": self.layers,
            "Size": self.size,
        }


def byte_count_si(b: int) -> str:
    """Format a byte count with decimal (SI) units."""
    unit = 1000
    if b < unit:
        return f"{b} B"
    div, exp = unit, 0
    n = b // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{b / div:.1f} {'kMGTPE'[exp]}B"


def new_item(
    desc: Descriptor,
    manifest: Mapping[str, Any],
    platform: str,
    type_filter: str,
) -> Item | None:
    """Describe one manifest; None if it is unnamed or filtered out."""
    layers = manifest.get("layers") or []
    size = sum(int(layer.get("size", 0)) for layer in layers)

    config_type = (manifest.get("config") or {}).get("mediaType", "")
    if config_type == CHART_CONFIG:
        ctype = "chart"
    elif config_type in (FILE_LOCAL_CONFIG, FILE_HTTP_CONFIG):
        ctype = "file"
    else:
        ctype = "image"
    ctype = _KIND_TYPES.get(desc.annotations.get("kind", ""), ctype)

    ref_name = desc.annotations.get(ANNOTATION_IMAGE_NAME) or desc.annotations.get(
        ANNOTATION_REF_NAME, ""
    )
    try:
        ref = _parse_reference(ref_name)
    except ValueError:
        return None

    if type_filter != "all" and ctype != type_filter:
        return None

    return Item(ref.name, ctype, platform, len(layers), size)


def sort_items(items: Iterable[Item]) -> list[Item]:
    """Order by reference; within one, images first by platform, then by type."""

    def key(item: Item) -> tuple[str, int, str]:
        if item.type == "image":
            return item.reference, 0, item.platform
        return item.reference, 1, item.type

    return sorted(items, key=key)


def build_list_repos(items: Iterable[Item]) -> list[str]:
    """Return the unique repository names of the items, in first-seen order."""
    names = (item.reference.split("/", 1)[0] or item.reference for item in items)
    return list(dict.fromkeys(names))


def build_table(items: Iterable[Item]) -> str:
    """Render items as a table with a size total."""
    rows: list[list[str]] = []
    total = 0
    previous: str | None = None
    for item in items:
        if not item.type:
            continue
        reference = "" if item.reference == previous else item.reference
        previous = item.reference
        rows.append(
            [reference, item.type, item.platform, str(item.layers), byte_count_si(item.size)]
        )
        total += item.size
    rows.append(["", "", "", "TOTAL", byte_count_si(total)])
    return tabulate(
        rows,
        headers=["REFERENCE", "TYPE", "PLATFORM", "# LAYERS", "SIZE"],
        tablefmt="grid",
        disable_numparse=True,
        stralign="left",
    )


def build_json(items: Iterable[Item]) -> str:
    """Render items as indented JSON; an empty listing is null."""
    data = [item.to_dict() for item in items]
    return json.dumps(data or None, indent=2)


def _collect(layout: Layout, type_filter: str) -> list[Item]:
    found: list[Item | None] = []
    for _, desc in layout.walk():
        if ANNOTATION_REF_NAME not in desc.annotations:
            continue
        data = json.loads(layout.fetch(desc))

        if desc.media_type in INDEX_MEDIA_TYPES:
            for entry in data.get("manifests") or []:
                inner = Descriptor.from_dict(entry)
                manifest = json.loads(layout.fetch(inner))
                plat = inner.platform or {}
                platform = f"{plat.get('os', '')}/{plat.get('architecture', '')}"
                found.append(new_item(desc, manifest, platform, type_filter))
        elif desc.media_type in MANIFEST_MEDIA_TYPES:
            config = json.loads(layout.fetch(Descriptor.from_dict(data["config"])))
            arch = config.get("architecture", "")
            platform = f"{config.get('os', '')}/{arch}" if arch else "-"
            found.append(new_item(desc, data, platform, type_filter))
        else:
            found.append(new_item(desc, data, "-", type_filter))
    return [item for item in found if item is not None]


def info_cmd(opts: InfoOpts, layout: Layout) -> None:
    """Print what the store holds as a table, as JSON, or as repository names."""
    items = _collect(layout, opts.type_filter)

    if opts.list_repos:
        for name in build_list_repos(items):
            print(name)
        return

    items = sort_items(items)
    if opts.output_format == "json":
        print(build_json(items))
    else:
        print(build_table(items))