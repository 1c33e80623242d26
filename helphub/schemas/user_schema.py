from marshmallow import fields, validate, pre_load, EXCLUDE

from helphub.extensions import ma
from helphub.schemas.fields import strip_strings
from helphub.utils.permissions import NEEDY, VOLUNTEER, ROLES


class RegisterSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    name = fields.String(required=True, validate=validate.Length(min=1, max=50))
    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True, validate=validate.Length(min=6))
    phone = fields.String(load_default=None, allow_none=True, validate=validate.Regexp(r"^\+?[0-9]{10,15}$"))
    address = fields.String(load_default=None, allow_none=True, validate=validate.Length(max=255))
    # admins are provisioned out of band
    role = fields.String(load_default=NEEDY, validate=validate.OneOf((NEEDY, VOLUNTEER)))

    @pre_load
    def trim(self, data, **kwargs):
        return strip_strings(data)


class LoginSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True)


class UserStatusSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    is_blocked = fields.Boolean(data_key="isBlocked")
    is_verified = fields.Boolean(data_key="isVerified")
    role = fields.String(validate=validate.OneOf(ROLES))


class FlagSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    is_flagged = fields.Boolean(data_key="isFlagged", required=True)
    flag_reason = fields.String(data_key="flagReason", load_default=None, allow_none=True, validate=validate.Length(max=500))
