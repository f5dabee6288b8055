import json

import pytest

from hauler.flags import InfoOpts
from hauler.info import (
    Item,
    build_json,
    build_list_repos,
    build_table,
    byte_count_si,
    info_cmd,
    new_item,
    sort_items,
)
from hauler.oci import (
    ANNOTATION_IMAGE_NAME,
    ANNOTATION_REF_NAME,
    CHART_CONFIG,
    CHART_LAYER,
    DOCKER_CONFIG_JSON,
    DOCKER_LAYER,
    DOCKER_MANIFEST,
    OCI_IMAGE_INDEX,
    Descriptor,
    Layout,
)


def _image(layout, os_="linux", arch="amd64", layer=b"layer-bytes"):
    config = layout.add_blob(
        json.dumps({"os": os_, "architecture": arch}).encode(), DOCKER_CONFIG_JSON
    )
    layer_desc = layout.add_blob(layer, DOCKER_LAYER)
    manifest = {
        "schemaVersion": 2,
        "mediaType": DOCKER_MANIFEST,
        "config": config.to_dict(),
        "layers": [layer_desc.to_dict()],
    }
    return layout.add_blob(json.dumps(manifest).encode(), DOCKER_MANIFEST), layer_desc


def _index(layout, desc, ref, **extra):
    annotations = {ANNOTATION_REF_NAME: ref, **extra}
    entry = Descriptor(desc.media_type, desc.digest, desc.size, annotations=annotations)
    layout.add_to_index(entry)
    return entry


@pytest.mark.parametrize("value,expected", [(0, "0 B"), (999, "999 B"), (1000, "1.0 kB")])
def test_byte_count_si_pinned(value, expected):
    assert byte_count_si(value) == expected


@pytest.mark.parametrize("value", [1001, 10**6, 10**9 + 7, 10**12, 10**18])
def test_byte_count_si_unit_suffix(value):
    number, unit = byte_count_si(value).split(" ")
    assert unit[0] in "kMGTPE" and unit.endswith("B")
    assert 1.0 <= float(number) < 1000.0


def test_info_cmd_json_single_image(tmp_path, capsys):
    layout = Layout(tmp_path / "store")
    manifest, layer = _image(layout)
    _index(layout, manifest, "hauler/app:1.0")
    info_cmd(InfoOpts(output_format="json"), layout)
    out = json.loads(capsys.readouterr().out)
    assert out == [
        {
            "Reference": "hauler/app:1.0",
            "Type": "image",
            "Platform": "linux/amd64",
            "Layers": 1,
            "Size": layer.size,
        }
    ]


def test_info_cmd_multi_arch_index(tmp_path, capsys):
    layout = Layout(tmp_path / "store")
    arm, _ = _image(layout, arch="arm64", layer=b"arm-layer")
    amd, _ = _image(layout, arch="amd64", layer=b"amd-layer")
    index = {
        "schemaVersion": 2,
        "mediaType": OCI_IMAGE_INDEX,
        "manifests": [
            {**arm.to_dict(), "platform": {"os": "linux", "architecture": "arm64"}},
            {**amd.to_dict(), "platform": {"os": "linux", "architecture": "amd64"}},
        ],
    }
    idx = layout.add_blob(json.dumps(index).encode(), OCI_IMAGE_INDEX)
    _index(layout, idx, "hauler/multi:2.0")
    info_cmd(InfoOpts(output_format="json"), layout)
    out = json.loads(capsys.readouterr().out)
    assert [row["Platform"] for row in out] == ["linux/amd64", "linux/arm64"]
    assert {row["Reference"] for row in out} == {"hauler/multi:2.0"}


def test_info_cmd_filter_excludes_everything(tmp_path, capsys):
    layout = Layout(tmp_path / "store")
    manifest, _ = _image(layout)
    _index(layout, manifest, "hauler/app:1.0")
    info_cmd(InfoOpts(output_format="json", type_filter="chart"), layout)
    assert json.loads(capsys.readouterr().out) is None


def test_info_cmd_skips_unnamed_entries(tmp_path, capsys):
    layout = Layout(tmp_path / "store")
    manifest, _ = _image(layout)
    layout.add_to_index(manifest)
    info_cmd(InfoOpts(output_format="json"), layout)
    assert json.loads(capsys.readouterr().out) is None


def test_info_cmd_list_repos(tmp_path, capsys):
    layout = Layout(tmp_path / "store")
    first, _ = _image(layout, layer=b"one")
    second, _ = _image(layout, layer=b"two")
    third, _ = _image(layout, layer=b"three")
    _index(layout, first, "hauler/a:1")
    _index(layout, second, "hauler/b:1")
    _index(layout, third, "other:2")
    info_cmd(InfoOpts(list_repos=True), layout)
    lines = capsys.readouterr().out.split()
    assert sorted(lines) == ["hauler", "other:2"]


def test_info_cmd_table(tmp_path, capsys):
    layout = Layout(tmp_path / "store")
    manifest, _ = _image(layout)
    _index(layout, manifest, "hauler/app:1.0")
    info_cmd(InfoOpts(), layout)
    out = capsys.readouterr().out
    assert "hauler/app:1.0" in out
    assert "TOTAL" in out


def test_new_item_chart_type():
    desc = Descriptor("x", "sha256:" + "a" * 64, 1, annotations={ANNOTATION_REF_NAME: "hauler/c:1.0"})
    manifest = {"config": {"mediaType": CHART_CONFIG}, "layers": [{"mediaType": CHART_LAYER, "size": 7}]}
    item = new_item(desc, manifest, "-", "all")
    assert item == Item("hauler/c:1.0", "chart", "-", 1, 7)


def test_new_item_kind_annotation_overrides_type():
    desc = Descriptor(
        "x",
        "sha256:" + "b" * 64,
        1,
        annotations={ANNOTATION_REF_NAME: "hauler/c:1.0", "kind": "dev.cosignproject.cosign/sigs"},
    )
    item = new_item(desc, {"config": {"mediaType": DOCKER_CONFIG_JSON}}, "-", "all")
    assert item.type == "sigs"


def test_new_item_prefers_containerd_name():
    desc = Descriptor(
        "x",
        "sha256:" + "c" * 64,
        1,
        annotations={ANNOTATION_REF_NAME: "1.0", ANNOTATION_IMAGE_NAME: "hauler/real:1.0"},
    )
    item = new_item(desc, {}, "-", "all")
    assert item.reference == "hauler/real:1.0"


def test_new_item_invalid_reference_and_filter():
    bad = Descriptor("x", "sha256:" + "d" * 64, 1, annotations={ANNOTATION_REF_NAME: "Bad/Ref:1"})
    assert new_item(bad, {}, "-", "all") is None
    good = Descriptor("x", "sha256:" + "d" * 64, 1, annotations={ANNOTATION_REF_NAME: "hauler/a:1"})
    assert new_item(good, {}, "-", "file") is None


def test_sort_items_orders_images_first():
    chart = Item("a:1", "chart", "-", 1, 1)
    img_arm = Item("a:1", "image", "linux/arm64", 1, 1)
    img_amd = Item("a:1", "image", "linux/amd64", 1, 1)
    other = Item("0:1", "file", "-", 1, 1)
    assert sort_items([chart, img_arm, other, img_amd]) == [other, img_amd, img_arm, chart]


def test_build_list_repos_unique():
    items = [Item("x/a:1", "image", "-", 0, 0), Item("x/b:1", "image", "-", 0, 0), Item("y:1", "file", "-", 0, 0)]
    assert build_list_repos(items) == ["x", "y:1"]


def test_build_json_round_trip_and_table_merge():
    items = [Item("a:1", "image", "linux/amd64", 2, 10), Item("a:1", "image", "linux/arm64", 2, 20)]
    assert json.loads(build_json(items)) == [i.to_dict() for i in items]
    table = build_table(items)
    assert table.count("a:1") == 1
    assert byte_count_si(30) in table