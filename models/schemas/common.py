from marshmallow import fields, ValidationError

from services.clock import as_utc


class UTCDateTime(fields.DateTime):
    """ISO-8601 datetime; naive input and naive stored values are taken as UTC."""

    def _serialize(self, value, attr, obj, **kwargs):
        return super()._serialize(as_utc(value), attr, obj, **kwargs)

    def _deserialize(self, value, attr, data, **kwargs):
        return as_utc(super()._deserialize(value, attr, data, **kwargs))


def validate_non_blank(max_len: int):
    def _validate(value):
        if value is None:
            return
        if not value.strip():
            raise ValidationError("Must not be blank.")
        if len(value) > max_len:
            raise ValidationError(f"Must be at most {max_len} characters.")
    return _validate


def validate_interval(data, start_key="start_time", end_key="end_time"):
    """Schema-level check; the booking service enforces the same rule."""
    start, end = data.get(start_key), data.get(end_key)
    if start is not None and end is not None and start >= end:
        raise ValidationError(f"{end_key} must be after {start_key}.", field_name=end_key)
