"""
Bundle reading, canonical encoding and content-derived app ids.

A bundle file is a (usually gzip-compressed) JSON document:

  {"manifest": {...}, "resources": {"<path>": "<base64 bytes>", ...}}

DNA bundles carry "integrity"/"coordinator" zomes in their manifest; app
bundles carry "roles". The installed app id of a bundle is the SHA-256 of its
canonical encoding, so re-running against identical content never installs
twice and any content change yields a distinct app.
"""
import base64
import binascii
import gzip
import json
import logging
import math
from pathlib import Path

from cryptography.hazmat.primitives import hashes

from alwayson.errors import BundleReadError, EncodingError
from alwayson.models import Bundle

log = logging.getLogger("alwayson.bundle")

_GZIP_MAGIC = b"\x1f\x8b"

DNA_ROLE_NAME = "dna"
DNA_RESOURCE_PATH = "dna.dna"


def read_bundle(path) -> Bundle:
    """Read and parse a bundle file. Raises BundleReadError on any failure."""
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise BundleReadError(f"cannot read bundle {path}: {exc}") from exc
    try:
        return parse_bundle(raw)
    except BundleReadError as exc:
        raise BundleReadError(f"{path}: {exc}") from exc


def parse_bundle(raw: bytes) -> Bundle:
    if raw[:2] == _GZIP_MAGIC:
        try:
            raw = gzip.decompress(raw)
        except (OSError, EOFError) as exc:
            raise BundleReadError(f"corrupt gzip stream: {exc}") from exc
    try:
        doc = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise BundleReadError(f"not a bundle document: {exc}") from exc

    if not isinstance(doc, dict) or "manifest" not in doc:
        raise BundleReadError("bundle document has no manifest")
    resources_raw = doc.get("resources") or {}
    if not isinstance(resources_raw, dict):
        raise BundleReadError("bundle resources must be a mapping")

    resources: dict[str, bytes] = {}
    for name, value in resources_raw.items():
        if not isinstance(value, str):
            raise BundleReadError(f"resource {name!r} is not base64 text")
        try:
            resources[name] = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise BundleReadError(f"resource {name!r} is not valid base64: {exc}") from exc
    return Bundle(manifest=doc["manifest"], resources=resources)


def encode_bundle(bundle: Bundle) -> bytes:
    """
    Canonical byte encoding of a bundle.

    Sorted keys, compact separators and base64 resources make the output
    depend only on content, never on dict insertion order or on the file's
    compression. Raises EncodingError for a malformed manifest.
    """
    manifest = bundle.manifest
    if not isinstance(manifest, dict):
        raise EncodingError("manifest must be a mapping")
    name = manifest.get("name")
    if not isinstance(name, str):
        raise EncodingError("manifest has no name")
    _reject_non_finite(manifest)

    doc = {
        "manifest": manifest,
        "resources": {
            k: base64.b64encode(v).decode("ascii")
            for k, v in bundle.resources.items()
        },
    }
    try:
        text = json.dumps(doc, sort_keys=True, separators=(",", ":"),
                          ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"manifest {name!r} cannot be encoded: {exc}") from exc
    return text.encode("utf-8")


def _reject_non_finite(value):
    if isinstance(value, float) and not math.isfinite(value):
        raise EncodingError(f"manifest contains a non-finite number: {value!r}")
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise EncodingError(f"manifest key {k!r} is not a string")
            _reject_non_finite(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            _reject_non_finite(v)


def app_id_for_bytes(data: bytes) -> str:
    """SHA-256 of data as lowercase hex."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize().hex()


def derive_app_id(bundle: Bundle) -> str:
    return app_id_for_bytes(encode_bundle(bundle))


def wrap_dna_in_app(dna: Bundle) -> Bundle:
    """
    Wrap a DNA bundle into an app bundle with a single role.

    The role is provisioned immediately on install (strategy "create", not
    deferred) and cannot be cloned.
    """
    manifest = {
        "manifest_version": "1",
        "name": "",
        "description": None,
        "roles": [{
            "name": DNA_ROLE_NAME,
            "provisioning": {"strategy": "create", "deferred": False},
            "dna": {
                "bundled": DNA_RESOURCE_PATH,
                "modifiers": None,
                "installed_hash": None,
                "clone_limit": 0,
            },
        }],
        "allow_deferred_memproofs": False,
    }
    return Bundle(manifest=manifest, resources={DNA_RESOURCE_PATH: encode_bundle(dna)})


def write_bundle(bundle: Bundle, path, compress: bool = True) -> Path:
    """Write a bundle file readable by read_bundle()."""
    path = Path(path)
    data = encode_bundle(bundle)
    path.write_bytes(gzip.compress(data, mtime=0) if compress else data)
    log.debug("Wrote bundle %s (%d bytes)", path, len(data))
    return path
