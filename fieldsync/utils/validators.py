# =======================================================================================
# fieldsync/utils/validators.py - Validation Helpers
# =======================================================================================
import re
from typing import Any, Optional
from pydantic import ValidationError
from .exceptions import InvalidTagError, ValidationRejection
from ..models.schemas import ScanEvent

# printable, no whitespace; same length bounds as the server column
TAG_PATTERN = re.compile(r"^[\x21-\x7e]{1,100}$")


class TagValidator:
    """Validates raw tag reads before they become events."""

    @staticmethod
    def normalize_tag(raw: Any) -> str:
        """Strip and validate a tag read, returning the canonical tag id."""
        if not isinstance(raw, str):
            raise InvalidTagError(f"Tag read must be text, got {type(raw).__name__}")

        tag = raw.strip()
        if not tag:
            raise InvalidTagError("Empty tag read")

        if not TAG_PATTERN.match(tag):
            raise InvalidTagError(f"Malformed tag read: {tag[:32]!r}")

        return tag


class EventValidator:
    """Validates incoming wire events on the server."""

    @staticmethod
    def extract_correlation_id(raw: Any) -> Optional[str]:
        """Best-effort correlation id for acknowledging an invalid event."""
        if isinstance(raw, dict):
            value = raw.get("correlationId", raw.get("correlation_id"))
            if isinstance(value, str):
                return value
        return None

    @staticmethod
    def validate_event(raw: Any) -> ScanEvent:
        """
        Parse one wire event.

        Raises ValidationRejection with a short reason when the shape is wrong,
        so one malformed entry never fails its siblings.
        """
        correlation_id = EventValidator.extract_correlation_id(raw)
        if not isinstance(raw, dict):
            raise ValidationRejection("Event must be an object", correlation_id)

        try:
            event = ScanEvent.model_validate(raw)
        except ValidationError as e:
            first = e.errors()[0]
            where = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationRejection(f"{where}: {first.get('msg')}", correlation_id)

        try:
            TagValidator.normalize_tag(event.tag_id)
        except InvalidTagError as e:
            raise ValidationRejection(str(e), event.correlation_id)

        return event
