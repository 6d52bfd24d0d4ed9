"""Pydantic models for normalized messages, enrichment records and export envelopes."""
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from common.utils.datetime_utils import normalize_to_utc

EXPORT_SCHEMA_VERSION = "2.0.0"


class MessageKind(str, Enum):
    """Top-level message classification."""

    TEXT = "text"
    MEDIA = "media"
    TAPBACK = "tapback"
    NOTIFICATION = "notification"


class MediaKind(str, Enum):
    """Kind of the single attachment carried by a media message."""

    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    PDF = "pdf"
    UNKNOWN = "unknown"


class EnrichmentKind(str, Enum):
    """Kind of an enrichment record; idempotency is keyed on this value."""

    IMAGE = "image"
    AUDIO = "audio"
    LINK = "link"
    VIDEO = "video"
    PDF = "pdf"
    UNKNOWN = "unknown"
    TRANSCRIPTION = "transcription"
    PDF_SUMMARY = "pdf_summary"
    VIDEO_METADATA = "video_metadata"
    LINK_CONTEXT = "link_context"
    IMAGE_ANALYSIS = "image_analysis"


class TapbackType(str, Enum):
    """Reaction type of a tapback."""

    LOVED = "loved"
    LIKED = "liked"
    DISLIKED = "disliked"
    LAUGHED = "laughed"
    EMPHASIZED = "emphasized"
    QUESTIONED = "questioned"
    EMOJI = "emoji"


class ExportSource(str, Enum):
    """Origin of an export envelope."""

    CSV = "csv"
    DB = "db"
    MERGED = "merged"


class CamelModel(BaseModel):
    """Base for all wire models: camelCase JSON keys, snake_case attributes, frozen."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# =============================================================================
# PAYLOAD MODELS
# =============================================================================


class MediaEnrichment(CamelModel):
    """One enrichment record produced by a provider.

    Provider-specific fields (``visionSummary``, ``transcription``, ``url``,
    ``title``, ``summary`` ...) are kept as extra attributes.
    """

    model_config = ConfigDict(extra="allow")

    kind: EnrichmentKind = Field(..., description="Enrichment kind")
    provider: str = Field(..., description="Provider that produced the record")
    model: str | None = Field(None, description="Model or extractor name")
    version: str = Field(..., description="Provider output version")
    created_at: datetime = Field(..., description="UTC creation timestamp")

    @field_validator("created_at", mode="before")
    @classmethod
    def _utc_created_at(cls, value: Any) -> Any:
        return normalize_to_utc(value) or value


class MediaProvenance(CamelModel):
    """Where a media path was resolved from."""

    source: ExportSource
    last_seen: datetime
    resolved_at: datetime


class MediaMeta(CamelModel):
    """The single media item carried by a media message."""

    id: str = Field(..., description="Stable attachment identifier")
    filename: str = Field(..., description="Original filename")
    path: str = Field(..., description="Absolute path of the attachment")
    size: int | None = None
    mime_type: str | None = None
    uti: str | None = None
    is_sticker: bool | None = None
    hidden: bool | None = None
    media_kind: MediaKind | None = None
    enrichment: list[MediaEnrichment] | None = None
    provenance: MediaProvenance | None = None


class ReplyInfo(CamelModel):
    """Reply association to an earlier message."""

    sender: str | None = None
    date: datetime | None = None
    text: str | None = None
    target_message_guid: str | None = None


class TapbackInfo(CamelModel):
    """Reaction payload of a tapback message."""

    type: TapbackType
    action: Literal["added", "removed"]
    target_message_guid: str | None = None
    target_message_part: int | None = None
    target_text: str | None = None
    is_media: bool | None = None
    emoji: str | None = None


# =============================================================================
# MESSAGE MODELS (discriminated on message_kind)
# =============================================================================


class MessageBase(CamelModel):
    """Fields shared by every message kind."""

    guid: str = Field(..., min_length=1, description="Globally unique message id")
    rowid: int | None = None
    chat_id: str | None = None
    service: str | None = None
    subject: str | None = None
    handle_id: int | None = None
    handle: str | None = Field(None, description="Sender identity")
    is_from_me: bool = False
    date: datetime = Field(..., description="UTC send timestamp")
    date_read: datetime | None = None
    date_delivered: datetime | None = None
    date_edited: datetime | None = None
    is_read: bool | None = None
    group_guid: str | None = None
    group_title: str | None = None
    thread_originator_guid: str | None = None
    num_replies: int | None = None
    is_unsent: bool | None = None
    is_edited: bool | None = None
    export_timestamp: datetime | None = None
    export_version: str | None = None
    replying_to: ReplyInfo | None = None

    @field_validator(
        "date",
        "date_read",
        "date_delivered",
        "date_edited",
        "export_timestamp",
        mode="before",
    )
    @classmethod
    def _utc_dates(cls, value: Any) -> Any:
        if value is None:
            return None
        return normalize_to_utc(value) or value


class TextMessage(MessageBase):
    """Plain text message; link-context enrichment is stored on the message itself."""

    message_kind: Literal["text"] = "text"
    text: str | None = None
    enrichment: list[MediaEnrichment] | None = None


class MediaMessage(MessageBase):
    """Message carrying exactly one attachment."""

    message_kind: Literal["media"] = "media"
    text: str | None = None
    media: MediaMeta


class TapbackMessage(MessageBase):
    """Reaction to another message."""

    message_kind: Literal["tapback"] = "tapback"
    text: str | None = None
    tapback: TapbackInfo


class NotificationMessage(MessageBase):
    """Group or system notification."""

    message_kind: Literal["notification"] = "notification"
    text: str | None = None


Message = Annotated[
    TextMessage | MediaMessage | TapbackMessage | NotificationMessage,
    Field(discriminator="message_kind"),
]

MESSAGE_ADAPTER: TypeAdapter[Message] = TypeAdapter(Message)
MESSAGE_LIST_ADAPTER: TypeAdapter[list[Message]] = TypeAdapter(list[Message])


def parse_message(data: dict[str, Any]) -> Message:
    """Validate a camelCase (or snake_case) dict into the matching message model."""
    return MESSAGE_ADAPTER.validate_python(data)


def dump_message(message: Message) -> dict[str, Any]:
    """Serialize a message to its camelCase JSON form, omitting unset optionals."""
    return message.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExportEnvelope(CamelModel):
    """Top-level JSON document wrapping a message collection."""

    schema_version: str = Field(
        default=EXPORT_SCHEMA_VERSION, description="Envelope schema version"
    )
    source: ExportSource
    created_at: datetime
    messages: list[Message] = Field(default_factory=list)
    meta: dict[str, Any] | None = None
