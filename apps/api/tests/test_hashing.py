"""Tests for canonical hashing and proof packets."""

import json

import pytest
from pydantic import ValidationError

from attest_api.proofs import packet as packet_builder
from attest_api.proofs.hashing import (
    canonicalize,
    content_hash,
    hash_canonical,
    normalize_hash,
    sha256_hex,
    strip_prefix,
)
from attest_api.proofs.packet import packet_hash_of

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_canonicalize_ignores_key_order():
    """Equal JSON values serialize identically regardless of insertion order."""
    a = {"b": 1, "a": {"y": [1, 2], "x": "z"}}
    b = {"a": {"x": "z", "y": [1, 2]}, "b": 1}
    assert canonicalize(a) == canonicalize(b)
    assert canonicalize(a) == '{"a":{"x":"z","y":[1,2]},"b":1}'


def test_canonicalize_keeps_unicode():
    assert canonicalize({"t": "café"}) == '{"t":"café"}'


def test_sha256_of_text_and_bytes():
    assert sha256_hex(b"") == EMPTY_SHA256
    assert sha256_hex("") == EMPTY_SHA256
    assert content_hash(b"") == f"sha256:{EMPTY_SHA256}"


def test_hash_prefix_helpers():
    assert strip_prefix(f"sha256:{EMPTY_SHA256}") == EMPTY_SHA256
    assert strip_prefix(EMPTY_SHA256) == EMPTY_SHA256
    assert strip_prefix(None) is None
    assert normalize_hash(EMPTY_SHA256.upper()) == f"sha256:{EMPTY_SHA256}"
    assert normalize_hash(f"SHA256:{EMPTY_SHA256}") == f"sha256:{EMPTY_SHA256}"
    assert normalize_hash("") is None


def test_packet_hashes_input_and_output():
    packet = packet_builder.build(
        "ai:compose",
        {"prompt": "hi", "language": "en"},
        {"proposalText": "hello"},
        subject_id="42",
        timestamp=1700000000000,
    )
    assert packet.id.startswith("pp_")
    assert packet.timestamp == 1700000000000
    assert packet.hashes.input == hash_canonical({"language": "en", "prompt": "hi"})
    assert packet.hashes.output == hash_canonical({"proposalText": "hello"})
    assert packet.content_hash == packet.hashes.output


def test_packet_is_frozen():
    packet = packet_builder.build("ai:compose", {"prompt": "hi"}, {"proposalText": "x"})
    with pytest.raises(ValidationError):
        packet.kind = "ai:other"


def test_packet_hash_survives_pretty_printing():
    """A reformatted packet file re-hashes to the canonical packet hash."""
    packet = packet_builder.build("ai:compose", {"prompt": "hi"}, {"proposalText": "x"})
    pretty = json.dumps(json.loads(packet.to_canonical()), indent=4)
    assert packet_hash_of(pretty) == packet.packet_hash
    assert packet_hash_of(packet.to_bytes()) == packet.packet_hash
    assert content_hash(packet.to_bytes()) == packet.packet_hash


def test_packets_for_same_operation_get_distinct_ids():
    first = packet_builder.build("ai:compose", {"prompt": "hi"}, {"proposalText": "x"}, timestamp=1)
    second = packet_builder.build("ai:compose", {"prompt": "hi"}, {"proposalText": "x"}, timestamp=1)
    assert first.id != second.id
    assert first.hashes == second.hashes
