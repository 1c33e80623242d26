from marshmallow import fields, validate, pre_load, EXCLUDE

from helphub.extensions import ma
from helphub.models.message import MESSAGE_TYPES
from helphub.schemas.fields import strip_strings


class AttachmentSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    url = fields.String(required=True)
    public_id = fields.String(data_key="publicId", load_default=None, allow_none=True)
    file_name = fields.String(data_key="fileName", load_default=None, allow_none=True)
    file_type = fields.String(data_key="fileType", load_default=None, allow_none=True)


class MessageLocationSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    coordinates = fields.List(fields.Float(), validate=validate.Length(equal=2), load_default=None)
    address = fields.String(load_default=None, allow_none=True)


class MessageSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    content = fields.String(required=True, validate=validate.Length(min=1, max=1000))
    message_type = fields.String(data_key="messageType", load_default="text", validate=validate.OneOf(MESSAGE_TYPES))
    attachments = fields.List(fields.Nested(AttachmentSchema), load_default=list)
    location = fields.Nested(MessageLocationSchema, load_default=None, allow_none=True)
    reply_to = fields.String(data_key="replyTo", load_default=None, allow_none=True)

    @pre_load
    def trim(self, data, **kwargs):
        return strip_strings(data)


class MessageEditSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    content = fields.String(required=True, validate=validate.Length(min=1, max=1000))

    @pre_load
    def trim(self, data, **kwargs):
        return strip_strings(data)


class TypingSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    is_typing = fields.Boolean(data_key="isTyping", required=True)
