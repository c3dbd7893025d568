import base64
import json

import pytest

from fakes import make_dna, write_dna

from alwayson.bundle import (
    DNA_RESOURCE_PATH, app_id_for_bytes, derive_app_id, encode_bundle, read_bundle,
    wrap_dna_in_app, write_bundle,
)
from alwayson.errors import BundleReadError, EncodingError
from alwayson.models import AppDescriptor, Bundle


def test_app_id_is_deterministic():
    assert derive_app_id(make_dna()) == derive_app_id(make_dna())
    assert len(derive_app_id(make_dna())) == 64


def test_app_id_ignores_compression_and_key_order(tmp_path):
    dna = make_dna()
    shuffled = Bundle(manifest=dict(reversed(list(dna.manifest.items()))),
                      resources=dict(reversed(list(dna.resources.items()))))
    gz = write_bundle(dna, tmp_path / "a.dna", compress=True)
    plain = write_bundle(shuffled, tmp_path / "b.dna", compress=False)
    assert derive_app_id(read_bundle(gz)) == derive_app_id(read_bundle(plain))


def test_single_byte_change_changes_app_id():
    data = bytearray(encode_bundle(make_dna()))
    before = app_id_for_bytes(bytes(data))
    data[10] ^= 0x01
    assert app_id_for_bytes(bytes(data)) != before


def test_resource_change_changes_app_id():
    dna = make_dna()
    other = make_dna()
    other.resources["posts.wasm"] += b"\x00"
    assert derive_app_id(dna) != derive_app_id(other)


@pytest.mark.parametrize("manifest", [
    ["not", "a", "mapping"],
    {"manifest_version": "1"},
    {"name": "x", "ratio": float("nan")},
    {"name": "x", "blob": object()},
])
def test_malformed_manifest_raises_encoding_error(manifest):
    with pytest.raises(EncodingError):
        derive_app_id(Bundle(manifest=manifest))


def test_read_missing_file(tmp_path):
    with pytest.raises(BundleReadError, match="cannot read"):
        read_bundle(tmp_path / "nope.dna")


@pytest.mark.parametrize("content", [
    b"\x1f\x8bnot really gzip",
    b"definitely not json",
    json.dumps({"resources": {}}).encode(),
    json.dumps({"manifest": {"name": "x"}, "resources": {"a": "***"}}).encode(),
    json.dumps({"manifest": {"name": "x"}, "resources": ["a"]}).encode(),
])
def test_read_bad_bundle(tmp_path, content):
    path = tmp_path / "bad.dna"
    path.write_bytes(content)
    with pytest.raises(BundleReadError, match="bad.dna"):
        read_bundle(path)


def test_wrap_dna_in_app_has_single_create_role():
    dna = make_dna()
    app = wrap_dna_in_app(dna)
    roles = app.manifest["roles"]
    assert len(roles) == 1
    assert roles[0]["name"] == "dna"
    assert roles[0]["provisioning"] == {"strategy": "create", "deferred": False}
    assert roles[0]["dna"]["clone_limit"] == 0
    assert app.resources[DNA_RESOURCE_PATH] == encode_bundle(dna)
    assert not app.is_dna


def test_descriptor_load_derives_id_from_dna(tmp_path):
    path = write_dna(tmp_path, "chat")
    desc = AppDescriptor(str(path)).load()
    assert desc.app_id == derive_app_id(make_dna("chat"))
    assert desc.bundle.manifest["roles"][0]["name"] == "dna"


def test_descriptor_load_keeps_app_bundles(tmp_path):
    app = Bundle(manifest={"name": "suite", "roles": [{"name": "a"}]},
                 resources={"a.dna": base64.b64decode("AAEC")})
    path = write_bundle(app, tmp_path / "suite.happ")
    desc = AppDescriptor(path).load()
    assert desc.bundle.manifest == app.manifest
    assert desc.app_id == derive_app_id(app)
