from marshmallow import Schema, fields, validate

from models.schemas.common import UTCDateTime, validate_non_blank


class EquipmentCreateSchema(Schema):
    name = fields.String(required=True, validate=validate_non_blank(255))
    model = fields.String(allow_none=True, validate=validate.Length(max=255))
    serial_number = fields.String(allow_none=True, validate=validate.Length(max=128))
    location = fields.String(required=True, validate=validate_non_blank(255))
    description = fields.String(allow_none=True)
    maintenance_notes = fields.String(allow_none=True)
    requires_training = fields.Boolean(load_default=False)
    booking_duration = fields.Integer(load_default=60, validate=validate.Range(min=1))


class EquipmentUpdateSchema(Schema):
    name = fields.String(validate=validate_non_blank(255))
    model = fields.String(allow_none=True, validate=validate.Length(max=255))
    serial_number = fields.String(allow_none=True, validate=validate.Length(max=128))
    location = fields.String(validate=validate_non_blank(255))
    description = fields.String(allow_none=True)
    maintenance_notes = fields.String(allow_none=True)
    is_available = fields.Boolean()
    requires_training = fields.Boolean()
    booking_duration = fields.Integer(validate=validate.Range(min=1))


class EquipmentOutSchema(Schema):
    id = fields.String()
    name = fields.String()
    model = fields.String(allow_none=True)
    serial_number = fields.String(allow_none=True)
    location = fields.String()
    description = fields.String(allow_none=True)
    maintenance_notes = fields.String(allow_none=True)
    is_available = fields.Boolean()
    requires_training = fields.Boolean()
    booking_duration = fields.Integer()
    created_at = UTCDateTime()
    updated_at = UTCDateTime()


class ScheduleQuerySchema(Schema):
    start_date = UTCDateTime(load_default=None)
    end_date = UTCDateTime(load_default=None)
