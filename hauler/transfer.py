"""Copying store content to directories or registries, and loading store archives."""

from __future__ import annotations

import base64
import logging
import os
import shutil
import ssl
import tarfile
import tempfile
import urllib.error
import urllib.parse
import urllib.request
from typing import Mapping

import zstandard

from hauler.flags import CopyOpts, LoadOpts
from hauler.mapper import MapperFileStore
from hauler.oci import (
    ANNOTATION_IMAGE_NAME,
    ANNOTATION_REF_NAME,
    INDEX_MEDIA_TYPES,
    MANIFEST_MEDIA_TYPES,
    Descriptor,
    Layout,
)

_log = logging.getLogger(__name__)

_ZSTD_SUFFIXES = (".zst", ".zstd", ".tzst")


def _split_reference(ref: str) -> tuple[str, str]:
    """Return the repository path (without registry host) and tag or digest of a reference."""
    name, _, digest = ref.partition("@")
    tag = ""
    colon = name.rfind(":")
    if colon > name.rfind("/"):
        name, tag = name[:colon], name[colon + 1:]
    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        name = rest
    return name, tag or digest or "latest"


class _RegistryClient:
    def __init__(self, location: str, opts: CopyOpts) -> None:
        host, _, prefix = location.partition("/")
        scheme = "http" if opts.plain_http else "https"
        self.base = f"{scheme}://{host}"
        self.prefix = prefix.strip("/")
        self.headers: dict[str, str] = {}
        if opts.username:
            creds = f"{opts.username}:{opts.password}".encode()
            self.headers["Authorization"] = "Basic " + base64.b64encode(creds).decode()
        self.context: ssl.SSLContext | None = None
        if scheme == "https":
            self.context = ssl.create_default_context()
            if opts.insecure:
                self.context.check_hostname = False
                self.context.verify_mode = ssl.CERT_NONE

    def repository(self, repo: str) -> str:
        return f"{self.prefix}/{repo}" if self.prefix else repo

    def _send(
        self,
        method: str,
        url: str,
        data: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ):
        request = urllib.request.Request(
            urllib.parse.urljoin(self.base, url),
            data=data,
            method=method,
            headers={**self.headers, **(headers or {})},
        )
        with urllib.request.urlopen(request, context=self.context, timeout=60) as resp:
            resp.read()
            return resp.headers

    def blob_exists(self, repo: str, digest: str) -> bool:
        try:
            self._send("HEAD", f"/v2/{repo}/blobs/{digest}")
        except urllib.error.HTTPError as exc:
            if exc.code == 404:
                return False
            raise
        return True

    def upload_blob(self, repo: str, digest: str, data: bytes) -> None:
        headers = self._send("POST", f"/v2/{repo}/blobs/uploads/", data=b"")
        location = headers.get("Location")
        if not location:
            raise RuntimeError(f"registry gave no upload location for {repo}")
        separator = "&" if "?" in location else "?"
        url = f"{location}{separator}digest={urllib.parse.quote(digest)}"
        self._send("PUT", url, data=data, headers={"Content-Type": "application/octet-stream"})

    def put_manifest(self, repo: str, ref: str, media_type: str, data: bytes) -> None:
        self._send("PUT", f"/v2/{repo}/manifests/{ref}", data=data, headers={"Content-Type": media_type})


class _RegistryPusher:
    """Push target for one reference: blobs by digest, the root manifest by tag."""

    def __init__(self, client: _RegistryClient, repo: str, tag: str, root_digest: str) -> None:
        self.client = client
        self.repo = repo
        self.tag = tag
        self.root_digest = root_digest

    def write(self, desc: Descriptor, data: bytes) -> None:
        if desc.media_type in MANIFEST_MEDIA_TYPES or desc.media_type in INDEX_MEDIA_TYPES:
            ref = self.tag if desc.digest == self.root_digest else desc.digest
            self.client.put_manifest(self.repo, ref, desc.media_type, data)
        elif not self.client.blob_exists(self.repo, desc.digest):
            self.client.upload_blob(self.repo, desc.digest, data)


def _push_to_registry(layout: Layout, location: str, opts: CopyOpts) -> None:
    client = _RegistryClient(location, opts)
    for _, desc in list(layout.walk()):
        name = desc.annotations.get(ANNOTATION_IMAGE_NAME) or desc.annotations.get(ANNOTATION_REF_NAME)
        if not name:
            continue
        repo, tag = _split_reference(name)
        pusher = _RegistryPusher(client, client.repository(repo), tag, desc.digest)
        layout.copy(desc.digest, pusher)


def copy_cmd(opts: CopyOpts, layout: Layout, target_ref: str) -> None:
    """Copy all store content to a dir:// or registry:// target."""
    scheme, sep, location = target_ref.partition("://")
    if not sep or scheme not in ("dir", "registry"):
        raise ValueError(f"detecting protocol from [{target_ref}]")

    if scheme == "dir":
        _log.debug("identified directory target reference")
        layout.copy_all(MapperFileStore(location))
    else:
        _log.debug("identified registry target reference")
        _push_to_registry(layout, location, opts)

    _log.info("copied artifacts to [%s]", location)


def _extract_tar(archive: tarfile.TarFile, dest: str) -> None:
    if hasattr(tarfile, "data_filter"):
        archive.extractall(dest, filter="data")
        return
    root = os.path.realpath(dest)
    for member in archive.getmembers():
        target = os.path.realpath(os.path.join(root, member.name))
        if target != root and not target.startswith(root + os.sep):
            raise ValueError(f"archive member escapes destination: {member.name}")
        if member.issym() or member.islnk():
            raise ValueError(f"links are not allowed in archives: {member.name}")
    archive.extractall(dest)


def _unarchive(archive_path: str, dest: str) -> None:
    if archive_path.endswith(_ZSTD_SUFFIXES):
        with open(archive_path, "rb") as src, tempfile.TemporaryFile() as plain:
            zstandard.ZstdDecompressor().copy_stream(src, plain)
            plain.seek(0)
            with tarfile.open(fileobj=plain, mode="r:") as archive:
                _extract_tar(archive, dest)
    else:
        with tarfile.open(archive_path, mode="r:*") as archive:
            _extract_tar(archive, dest)


def _unarchive_layout_to(archive_path: str, dest: str, temp_override: str) -> None:
    tmpdir = tempfile.mkdtemp(prefix="hauler", dir=temp_override or None)
    try:
        _unarchive(archive_path, tmpdir)
        Layout(tmpdir).copy_all(Layout(dest))
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


def load_cmd(opts: LoadOpts, *archive_refs: str) -> None:
    """Load store archives into the store, keeping what it already holds."""
    for archive_ref in archive_refs:
        _log.info("loading content from [%s] to [%s]", archive_ref, opts.store_dir)
        _unarchive_layout_to(archive_ref, opts.store_dir, opts.temp_override)