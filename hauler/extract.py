"""Extraction of store artifacts to plain files on disk."""

from __future__ import annotations

import json
import logging

from hauler.flags import ExtractOpts
from hauler.info import _parse_reference
from hauler.mapper import from_manifest
from hauler.oci import Descriptor, Layout

_log = logging.getLogger(__name__)


def extract_cmd(opts: ExtractOpts, layout: Layout, ref: str) -> list[Descriptor]:
    """Write every artifact matching ref to the destination directory.

    Returns the root descriptors extracted; raises LookupError if none match.
    """
    parsed = _parse_reference(ref)
    repo = f"{parsed.repository}:{parsed.identifier}"

    extracted: list[Descriptor] = []
    for reference, desc in list(layout.walk()):
        if repo not in reference:
            continue
        manifest = json.loads(layout.fetch(desc))
        target = from_manifest(manifest, opts.destination_dir)
        pushed = layout.copy(reference, target)
        _log.info(
            "extracted [%s] from store with digest [%s]", pushed.media_type, pushed.digest
        )
        extracted.append(pushed)

    if not extracted:
        raise LookupError(
            f"reference [{ref}] not found in store "
            "(hint: use `hauler store info` to list store contents)"
        )
    return extracted