import io
import json
import tarfile

import pytest
import zstandard

from hauler.flags import LoadOpts, SaveOpts
from hauler.oci import (
    ANNOTATION_IMAGE_NAME,
    ANNOTATION_REF_NAME,
    DOCKER_CONFIG_JSON,
    DOCKER_LAYER,
    DOCKER_MANIFEST,
    OCI_IMAGE_INDEX,
    Descriptor,
    Layout,
)
from hauler.save import (
    KIND_ANNOTATION_IMAGE,
    KIND_ANNOTATION_INDEX,
    KIND_ANNOTATION_NAME,
    Exports,
    save_cmd,
    write_exports_manifest,
)
from hauler.transfer import load_cmd


def _image(layout, os_="linux", arch="amd64", layer=b"layer"):
    config = layout.add_blob(json.dumps({"os": os_, "architecture": arch}).encode(), DOCKER_CONFIG_JSON)
    layer_desc = layout.add_blob(layer, DOCKER_LAYER)
    manifest = {
        "schemaVersion": 2,
        "mediaType": DOCKER_MANIFEST,
        "config": config.to_dict(),
        "layers": [layer_desc.to_dict()],
    }
    root = layout.add_blob(json.dumps(manifest).encode(), DOCKER_MANIFEST)
    return root, config, layer_desc


def _path(desc):
    alg, enc = desc.digest.split(":")
    return f"blobs/{alg}/{enc}"


def _index(layout, desc, name, kind, **extra):
    annotations = {KIND_ANNOTATION_NAME: kind, ANNOTATION_IMAGE_NAME: name, ANNOTATION_REF_NAME: name}
    entry = Descriptor(desc.media_type, desc.digest, desc.size, annotations=annotations, **extra)
    layout.add_to_index(entry)
    return entry


def _read_manifest(directory):
    return json.loads((directory / "manifest.json").read_text())


def test_image_docker_hub_familiar_tag(tmp_path):
    layout = Layout(tmp_path)
    root, config, layer = _image(layout)
    _index(layout, root, "docker.io/library/busybox:stable", KIND_ANNOTATION_IMAGE)
    write_exports_manifest(tmp_path, "")
    assert _read_manifest(tmp_path) == [
        {"Config": _path(config), "RepoTags": ["busybox:stable"], "Layers": [_path(layer)]}
    ]


def test_image_private_registry_and_default_tag(tmp_path):
    layout = Layout(tmp_path)
    root, _, _ = _image(layout, layer=b"private")
    other, _, _ = _image(layout, layer=b"hub")
    _index(layout, root, "registry.example.com/team/app:v1", KIND_ANNOTATION_IMAGE)
    _index(layout, other, "docker.io/library/busybox", KIND_ANNOTATION_IMAGE)
    exports = write_exports_manifest(tmp_path, "")
    tags = [rec["RepoTags"] for rec in exports.describe()]
    assert tags == [["registry.example.com/team/app:v1"], ["busybox:latest"]]


def test_unannotated_and_artifacts_skipped(tmp_path):
    layout = Layout(tmp_path)
    root, _, _ = _image(layout)
    layout.add_to_index(root)
    second, _, _ = _image(layout, layer=b"artifact")
    _index(layout, second, "hauler/art:1", KIND_ANNOTATION_IMAGE, artifact_type="application/x-sbom")
    write_exports_manifest(tmp_path, "")
    assert _read_manifest(tmp_path) == []


def _multi_arch(layout):
    amd, amd_cfg, _ = _image(layout, arch="amd64", layer=b"amd")
    arm, arm_cfg, _ = _image(layout, arch="arm64", layer=b"arm")
    unk, _, _ = _image(layout, os_="unknown", arch="unknown", layer=b"unk")
    index = {
        "schemaVersion": 2,
        "mediaType": OCI_IMAGE_INDEX,
        "manifests": [
            {**amd.to_dict(), "platform": {"os": "linux", "architecture": "amd64"}},
            {**arm.to_dict(), "platform": {"os": "linux", "architecture": "arm64"}},
            {**unk.to_dict(), "platform": {"os": "unknown", "architecture": "unknown"}},
        ],
    }
    idx = layout.add_blob(json.dumps(index).encode(), OCI_IMAGE_INDEX)
    _index(layout, idx, "hauler/multi:1", KIND_ANNOTATION_INDEX)
    return amd_cfg, arm_cfg


def test_index_platform_filter(tmp_path):
    layout = Layout(tmp_path)
    _, arm_cfg = _multi_arch(layout)
    write_exports_manifest(tmp_path, "linux/arm64")
    records = _read_manifest(tmp_path)
    assert [rec["Config"] for rec in records] == [_path(arm_cfg)]


def test_index_without_platform_skips_unknown(tmp_path):
    layout = Layout(tmp_path)
    amd_cfg, arm_cfg = _multi_arch(layout)
    write_exports_manifest(tmp_path, "")
    records = _read_manifest(tmp_path)
    assert [rec["Config"] for rec in records] == [_path(amd_cfg), _path(arm_cfg)]


def test_invalid_platform(tmp_path):
    with pytest.raises(ValueError):
        write_exports_manifest(tmp_path, "a/b/c/d")


def test_record_dedupes_by_digest(tmp_path):
    layout = Layout(tmp_path)
    root, _, _ = _image(layout)
    exports = Exports()
    exports.record(layout, root, "registry.example.com/x:b")
    exports.record(layout, root, "registry.example.com/x:a")
    exports.record(layout, root, "registry.example.com/x:a")
    described = exports.describe()
    assert exports.digests == [root.digest]
    assert described[0]["RepoTags"] == ["registry.example.com/x:a", "registry.example.com/x:b"]


def test_record_digest_reference_has_no_tags(tmp_path):
    layout = Layout(tmp_path)
    root, _, _ = _image(layout)
    exports = Exports()
    exports.record(layout, root, f"registry.example.com/x@{root.digest}")
    assert exports.describe()[0]["RepoTags"] == []


def test_save_and_load_round_trip(tmp_path):
    store = tmp_path / "store"
    layout = Layout(store)
    root, _, _ = _image(layout)
    _index(layout, root, "docker.io/library/busybox:stable", KIND_ANNOTATION_IMAGE)
    archive = tmp_path / "haul.tar.zst"

    result = save_cmd(SaveOpts(store_dir=str(store)), str(archive))
    assert result == str(archive)

    raw = zstandard.ZstdDecompressor().stream_reader(archive.read_bytes()).read()
    with tarfile.open(fileobj=io.BytesIO(raw), mode="r:") as tar:
        names = tar.getnames()
    assert "./manifest.json" in names and "./index.json" in names

    dest = tmp_path / "restored"
    load_cmd(LoadOpts(store_dir=str(dest)), str(archive))
    assert [d.digest for _, d in Layout(dest).walk()] == [root.digest]


def test_save_missing_store(tmp_path):
    with pytest.raises(FileNotFoundError):
        save_cmd(SaveOpts(store_dir=str(tmp_path / "absent")), str(tmp_path / "out.tar.zst"))