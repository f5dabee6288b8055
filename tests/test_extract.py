import json

import pytest

from hauler.extract import extract_cmd
from hauler.flags import ExtractOpts
from hauler.oci import (
    ANNOTATION_REF_NAME,
    ANNOTATION_TITLE,
    CHART_CONFIG,
    CHART_LAYER,
    DOCKER_CONFIG_JSON,
    DOCKER_LAYER,
    DOCKER_MANIFEST,
    OCI_MANIFEST,
    Descriptor,
    Layout,
)


def _publish(layout, manifest_type, config_type, config_bytes, layer_type, layer_bytes, ref, layer_annotations=None):
    config = layout.add_blob(config_bytes, config_type)
    layer = layout.add_blob(layer_bytes, layer_type, layer_annotations)
    manifest = {
        "schemaVersion": 2,
        "mediaType": manifest_type,
        "config": config.to_dict(),
        "layers": [layer.to_dict()],
    }
    root = layout.add_blob(json.dumps(manifest).encode(), manifest_type)
    layout.add_to_index(
        Descriptor(root.media_type, root.digest, root.size, annotations={ANNOTATION_REF_NAME: ref})
    )
    return root, config, layer


def test_extract_chart_uses_title(tmp_path):
    layout = Layout(tmp_path / "store")
    chart_bytes = b"chart archive bytes"
    root, _, _ = _publish(
        layout,
        OCI_MANIFEST,
        CHART_CONFIG,
        b'{"name":"mychart"}',
        CHART_LAYER,
        chart_bytes,
        "hauler/mychart:1.0.0",
        {ANNOTATION_TITLE: "mychart-1.0.0.tgz"},
    )
    out = tmp_path / "out"
    result = extract_cmd(ExtractOpts(destination_dir=str(out)), layout, "hauler/mychart:1.0.0")
    assert [d.digest for d in result] == [root.digest]
    assert (out / "mychart-1.0.0.tgz").read_bytes() == chart_bytes
    assert sorted(p.name for p in out.iterdir()) == ["mychart-1.0.0.tgz"]


def test_extract_image_layout(tmp_path):
    layout = Layout(tmp_path / "store")
    config_bytes = b'{"os":"linux","architecture":"amd64"}'
    layer_bytes = b"image layer"
    root, _, layer = _publish(
        layout, DOCKER_MANIFEST, DOCKER_CONFIG_JSON, config_bytes, DOCKER_LAYER, layer_bytes, "hauler/img:2.0"
    )
    out = tmp_path / "out"
    extract_cmd(ExtractOpts(destination_dir=str(out)), layout, "hauler/img:2.0")
    assert (out / "config.json").read_bytes() == config_bytes
    assert (out / f"{layer.digest}.tar.gz").read_bytes() == layer_bytes
    assert (out / "manifest.json").read_bytes() == layout.fetch(root)


def test_extract_matches_only_requested(tmp_path):
    layout = Layout(tmp_path / "store")
    _publish(layout, DOCKER_MANIFEST, DOCKER_CONFIG_JSON, b"{}", DOCKER_LAYER, b"a", "hauler/one:1")
    root, _, _ = _publish(layout, DOCKER_MANIFEST, DOCKER_CONFIG_JSON, b"{ }", DOCKER_LAYER, b"b", "hauler/two:1")
    result = extract_cmd(ExtractOpts(destination_dir=str(tmp_path / "out")), layout, "hauler/two:1")
    assert [d.digest for d in result] == [root.digest]


def test_extract_missing_reference(tmp_path):
    layout = Layout(tmp_path / "store")
    with pytest.raises(LookupError, match="not found in store"):
        extract_cmd(ExtractOpts(destination_dir=str(tmp_path / "out")), layout, "hauler/none:1")


def test_extract_invalid_reference(tmp_path):
    layout = Layout(tmp_path / "store")
    with pytest.raises(ValueError):
        extract_cmd(ExtractOpts(destination_dir=str(tmp_path / "out")), layout, "Not/Valid:1")