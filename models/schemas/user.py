from marshmallow import Schema, fields, pre_load, validates, ValidationError

from models.user import UserRole
from models.schemas.common import UTCDateTime


def _norm_email(v):
    return v.strip().lower() if isinstance(v, str) else v


def _check_password_strength(value):
    if len(value) < 8:
        raise ValidationError("Password must be at least 8 characters long.")


class UserCreateSchema(Schema):
    first_name = fields.String(allow_none=True)
    last_name = fields.String(allow_none=True)
    lab_affiliation = fields.String(allow_none=True)
    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True)

    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict) and "email" in data:
            data = dict(data, email=_norm_email(data["email"]))
        return data

    @validates("password")
    def validate_password(self, value, **kwargs):
        _check_password_strength(value)


class UserLoginSchema(Schema):
    email = fields.String(required=True)
    password = fields.String(required=True, load_only=True)

    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict) and "email" in data:
            data = dict(data, email=_norm_email(data["email"]))
        return data


class UserUpdateSchema(Schema):
    """Fields a lab manager may change on another account."""
    first_name = fields.String(allow_none=True)
    last_name = fields.String(allow_none=True)
    lab_affiliation = fields.String(allow_none=True)
    role = fields.Enum(UserRole)
    is_active = fields.Boolean()


class PasswordChangeSchema(Schema):
    current_password = fields.String(required=True, load_only=True)
    new_password = fields.String(required=True, load_only=True)

    @validates("new_password")
    def validate_password(self, value, **kwargs):
        _check_password_strength(value)


class UserOutSchema(Schema):
    id = fields.String(allow_none=False)
    first_name = fields.String(allow_none=True)
    last_name = fields.String(allow_none=True)
    email = fields.String(allow_none=True)
    role = fields.Enum(UserRole)
    lab_affiliation = fields.String(allow_none=True)
    is_active = fields.Boolean()
    last_active = UTCDateTime(allow_none=True)
    created_at = UTCDateTime()
