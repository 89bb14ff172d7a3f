"""
KairOS -- Discovery Primitives

Peer table entries and the four gossip message variants exchanged on the
local discovery channel. On the wire every message is {"type", "data"};
in Python the variants form a discriminated union on `type` so receivers
can dispatch with an exhaustive match.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from kairos.primitives.common import KairosBaseModel, now_ms


class PeerNode(KairosBaseModel):
    """A peer seen on the discovery channel. Pruned after prolonged silence."""

    peer_id: str = Field(alias="peerId")
    endpoint: str = ""
    last_seen: int = Field(default_factory=now_ms, alias="lastSeen")
    known_hashes: list[str] = Field(default_factory=list, alias="knownHashes")


# ─── Message Payloads ─────────────────────────────────────────────


class PeerAnnouncementData(KairosBaseModel):
    peer_id: str = Field(alias="peerId")
    endpoint: str = ""
    timestamp: int = Field(default_factory=now_ms)
    known_hashes: list[str] = Field(default_factory=list, alias="knownHashes")


class IdentityAnnouncementData(KairosBaseModel):
    chip_uid: str = Field(alias="chipUID")
    content_hash: str = Field(alias="contentHash")
    timestamp: int = Field(default_factory=now_ms)


class HashRequestData(KairosBaseModel):
    chip_uid: str = Field(alias="chipUID")
    request_id: str = Field(alias="requestId")
    requester_id: str = Field(alias="requesterId")


class HashResponseData(KairosBaseModel):
    chip_uid: str = Field(alias="chipUID")
    request_id: str = Field(alias="requestId")
    requester_id: str = Field(default="", alias="requesterId")
    # Left as a raw dict: the requester verifies it independently and a
    # malformed record must not break parsing of the envelope.
    record: dict[str, Any]


# ─── Message Variants ─────────────────────────────────────────────


class PeerAnnouncement(KairosBaseModel):
    type: Literal["peer-announcement"] = "peer-announcement"
    data: PeerAnnouncementData


class IdentityAnnouncement(KairosBaseModel):
    type: Literal["identity-announcement"] = "identity-announcement"
    data: IdentityAnnouncementData


class HashRequest(KairosBaseModel):
    type: Literal["hash-request"] = "hash-request"
    data: HashRequestData


class HashResponse(KairosBaseModel):
    type: Literal["hash-response"] = "hash-response"
    data: HashResponseData


DiscoveryMessage = Annotated[
    Union[PeerAnnouncement, IdentityAnnouncement, HashRequest, HashResponse],
    Field(discriminator="type"),
]

discovery_message_adapter: TypeAdapter[DiscoveryMessage] = TypeAdapter(DiscoveryMessage)


def parse_message(raw: bytes | str | dict[str, Any]) -> DiscoveryMessage:
    """Parse a wire message. Raises pydantic.ValidationError if malformed."""
    if isinstance(raw, dict):
        return discovery_message_adapter.validate_python(raw)
    return discovery_message_adapter.validate_json(raw)


def serialize_message(message: DiscoveryMessage) -> bytes:
    return discovery_message_adapter.dump_json(message, by_alias=True)
