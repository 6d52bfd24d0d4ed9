"""Loading and writing message collections as JSON export envelopes."""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from common.config.settings import get_settings
from common.models.message import (
    MESSAGE_LIST_ADAPTER,
    ExportEnvelope,
    ExportSource,
    Message,
)
from common.utils.atomic_io import atomic_write_json
from common.utils.datetime_utils import utc_now
from ingest.exceptions import InputNotFoundError, InvalidInputError

logger = logging.getLogger(__name__)


def load_messages(path: str | Path) -> list[Message]:
    """Load a message collection from an export envelope or a bare JSON array.

    Args:
        path: Path to the JSON file

    Returns:
        Messages in file order

    Raises:
        InputNotFoundError: If the file does not exist
        InvalidInputError: If the file is not valid JSON or fails validation
    """
    input_path = Path(path)
    if not input_path.is_file():
        raise InputNotFoundError(input_path)

    try:
        with open(input_path, encoding="utf-8") as f:
            raw: Any = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidInputError(input_path, f"not valid JSON ({e})") from e

    if isinstance(raw, dict):
        if "messages" not in raw:
            raise InvalidInputError(input_path, "envelope has no 'messages' field")
        raw_messages = raw["messages"]
    elif isinstance(raw, list):
        raw_messages = raw
    else:
        raise InvalidInputError(
            input_path, f"expected an object or array, got {type(raw).__name__}"
        )

    try:
        messages = MESSAGE_LIST_ADAPTER.validate_python(raw_messages)
    except ValidationError as e:
        raise InvalidInputError(
            input_path, f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}"
        ) from e

    logger.info(f"Loaded {len(messages)} messages from {input_path}")
    return messages


def build_envelope(
    messages: list[Message],
    source: ExportSource,
    meta: dict[str, Any] | None = None,
    schema_version: str | None = None,
) -> ExportEnvelope:
    """Wrap messages in an export envelope stamped with the current time.

    ``schema_version`` defaults to the ``export_schema_version`` setting.
    """
    return ExportEnvelope(
        schema_version=schema_version or get_settings().export_schema_version,
        source=source,
        created_at=utc_now(),
        messages=messages,
        meta=meta,
    )


def write_envelope(
    path: str | Path,
    messages: list[Message],
    source: ExportSource,
    meta: dict[str, Any] | None = None,
) -> ExportEnvelope:
    """Atomically write messages to ``path`` as an export envelope.

    Returns:
        The envelope that was written
    """
    envelope = build_envelope(messages, source, meta)
    atomic_write_json(
        path, envelope.model_dump(mode="json", by_alias=True, exclude_none=True)
    )
    logger.info(f"Wrote {len(messages)} messages ({source.value}) to {path}")
    return envelope
