from marshmallow import Schema, fields, validate, validates_schema

from models.booking import BookingStatus
from models.schemas.common import UTCDateTime, validate_interval, validate_non_blank


class BookingCreateSchema(Schema):
    equipment_id = fields.String(required=True)
    start_time = UTCDateTime(required=True)
    end_time = UTCDateTime(required=True)
    purpose = fields.String(allow_none=True, validate=validate_non_blank(255))
    notes = fields.String(allow_none=True)
    is_recurring = fields.Boolean(load_default=False)
    recurring_pattern = fields.String(allow_none=True, validate=validate.Length(max=64))

    @validates_schema
    def _validate_interval(self, data, **kwargs):
        validate_interval(data)


class BookingCheckSchema(Schema):
    equipment_id = fields.String(required=True)
    start_time = UTCDateTime(required=True)
    end_time = UTCDateTime(required=True)
    exclude_booking_id = fields.String(allow_none=True)

    @validates_schema
    def _validate_interval(self, data, **kwargs):
        validate_interval(data)


class BookingUpdateSchema(Schema):
    # All optional; time changes re-run the conflict check
    start_time = UTCDateTime()
    end_time = UTCDateTime()
    purpose = fields.String(validate=validate_non_blank(255))
    notes = fields.String()
    status = fields.Enum(BookingStatus)

    @validates_schema
    def _validate_interval(self, data, **kwargs):
        validate_interval(data)


class BookingOutSchema(Schema):
    id = fields.String()
    equipment_id = fields.String()
    user_id = fields.String()
    start_time = UTCDateTime()
    end_time = UTCDateTime()
    status = fields.Enum(BookingStatus)
    purpose = fields.String(allow_none=True)
    notes = fields.String(allow_none=True)
    is_recurring = fields.Boolean()
    recurring_pattern = fields.String(allow_none=True)
    created_at = UTCDateTime()
    updated_at = UTCDateTime()
