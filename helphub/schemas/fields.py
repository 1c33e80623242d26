from datetime import timezone

from dateutil import parser
from marshmallow import fields, ValidationError


class UTCDateTime(fields.Field):
    """ISO-8601 input normalised to a naive UTC datetime, the way the models store it."""

    def _deserialize(self, value, attr, data, **kwargs):
        if value in (None, ""):
            return None
        try:
            parsed = parser.isoparse(str(value))
        except (ValueError, OverflowError):
            raise ValidationError("Not a valid ISO-8601 datetime.")
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    def _serialize(self, value, attr, obj, **kwargs):
        return value.isoformat() + "Z" if value else None


def strip_strings(data):
    if not isinstance(data, dict):
        return data
    return {k: v.strip() if isinstance(v, str) else v for k, v in data.items()}
