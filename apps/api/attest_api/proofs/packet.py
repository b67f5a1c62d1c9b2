"""Proof packet builder.

A proof packet is the evidentiary unit for one operation: its inputs, its
outputs and their hashes. It is independent of any generated file's bytes.
Packets are frozen once built; a correction is a new packet with a new id.
"""

import json
import time
import uuid
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from attest_api.proofs.hashing import canonicalize, content_hash, hash_canonical


class PacketHashes(BaseModel):
    """Hashes of the canonical input and output."""

    model_config = ConfigDict(frozen=True)

    input: str
    output: str


class ProofPacket(BaseModel):
    """Canonical record of one operation's inputs and outputs."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: str
    timestamp: int  # unix ms
    subject_id: Optional[str] = None
    input: Any = None
    output: Any = None
    hashes: PacketHashes
    meta: Dict[str, Any] = Field(default_factory=dict)

    @property
    def content_hash(self) -> str:
        """Content hash recorded on the proof row (hash of the output)."""
        return self.hashes.output

    def to_canonical(self) -> str:
        """Canonical serialization; these are the evidence file bytes."""
        return canonicalize(self.model_dump(mode="json"))

    def to_bytes(self) -> bytes:
        return self.to_canonical().encode("utf-8")

    @property
    def packet_hash(self) -> str:
        """Hash of the full packet as written to the evidence file."""
        return content_hash(self.to_canonical())


def build(
    kind: str,
    input: Any,
    output: Any,
    subject_id: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    timestamp: Optional[int] = None,
) -> ProofPacket:
    """Build a proof packet, hashing canonicalized input and output."""
    return ProofPacket(
        id=f"pp_{uuid.uuid4().hex}",
        kind=str(kind),
        timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
        subject_id=subject_id,
        input=input,
        output=output,
        hashes=PacketHashes(
            input=hash_canonical(input),
            output=hash_canonical(output),
        ),
        meta=dict(meta or {}),
    )


def packet_hash_of(packet_json: Any) -> str:
    """Recompute a packet hash from a parsed packet or its stored text.

    Stored text is parsed and re-canonicalized so a pretty-printed evidence
    file hashes the same as the canonical bytes it was derived from.
    """
    if isinstance(packet_json, (str, bytes)):
        packet_json = json.loads(packet_json)
    return hash_canonical(packet_json)
