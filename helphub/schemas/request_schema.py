from marshmallow import fields, validate, pre_load, validates_schema, ValidationError, EXCLUDE

from helphub.extensions import ma
from helphub.models.help_request import CATEGORIES, URGENCIES, STATUSES
from helphub.models.rating import RATING_CATEGORIES
from helphub.schemas.fields import UTCDateTime, strip_strings


class ImageSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    url = fields.String(required=True, validate=validate.Length(min=1, max=1024))
    public_id = fields.String(data_key="publicId", load_default=None, allow_none=True)

    @pre_load
    def accept_snake_case(self, data, **kwargs):
        if isinstance(data, dict) and "public_id" in data and "publicId" not in data:
            data = dict(data)
            data["publicId"] = data.pop("public_id")
        return data


class LocationSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    address = fields.String(required=True, validate=validate.Length(min=1, max=255))
    coordinates = fields.List(fields.Float(), load_default=None)
    city = fields.String(load_default=None, allow_none=True)
    state = fields.String(load_default=None, allow_none=True)
    zip_code = fields.String(data_key="zipCode", load_default=None, allow_none=True)

    @pre_load
    def normalise(self, data, **kwargs):
        if isinstance(data, str):
            return {"address": data.strip(), "coordinates": [0.0, 0.0]}
        if not isinstance(data, dict):
            return data
        data = strip_strings(data)
        if "zip_code" in data and "zipCode" not in data:
            data["zipCode"] = data.pop("zip_code")
        coords = data.get("coordinates")
        if not isinstance(coords, (list, tuple)) or len(coords) != 2:
            data["coordinates"] = [0.0, 0.0]
        return data

    @validates_schema
    def check_coordinates(self, data, **kwargs):
        coords = data.get("coordinates")
        if not coords:
            return
        lng, lat = coords
        if not -180 <= lng <= 180 or not -90 <= lat <= 90:
            raise ValidationError("Coordinates must be [longitude, latitude] within range.", "coordinates")


class HelpRequestSchema(ma.Schema):
    """Input for creating a request."""

    class Meta:
        unknown = EXCLUDE

    title = fields.String(required=True, validate=validate.Length(min=5, max=100))
    description = fields.String(required=True, validate=validate.Length(min=10, max=1000))
    category = fields.String(required=True, validate=validate.OneOf(CATEGORIES))
    urgency = fields.String(required=True, validate=validate.OneOf(URGENCIES))
    location = fields.Nested(LocationSchema, required=True)
    estimated_completion_time = UTCDateTime(data_key="estimatedCompletionTime", load_default=None, allow_none=True)
    tags = fields.List(fields.String(validate=validate.Length(max=50)), load_default=list)
    images = fields.List(fields.Nested(ImageSchema), load_default=list)

    @pre_load
    def trim(self, data, **kwargs):
        return strip_strings(data)


class ImagesSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    images = fields.List(fields.Nested(ImageSchema), required=True, validate=validate.Length(min=1, max=5))


class StatusUpdateSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    status = fields.String(required=True, validate=validate.OneOf(STATUSES))
    estimated_completion_time = UTCDateTime(data_key="estimatedCompletionTime", load_default=None, allow_none=True)
    notes = fields.String(load_default=None, allow_none=True, validate=validate.Length(max=500))


class ApplySchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    message = fields.String(load_default=None, allow_none=True, validate=validate.Length(max=500))


class CancelSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    reason = fields.String(load_default=None, allow_none=True, validate=validate.Length(max=500))


class RatingCategorySchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    category = fields.String(required=True, validate=validate.OneOf(RATING_CATEGORIES))
    score = fields.Integer(required=True, validate=validate.Range(min=1, max=5))


class RatingSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    rating = fields.Integer(required=True, validate=validate.Range(min=1, max=5))
    review = fields.String(load_default=None, allow_none=True, validate=validate.Length(max=500))
    categories = fields.List(fields.Nested(RatingCategorySchema), load_default=list)
    is_anonymous = fields.Boolean(data_key="isAnonymous", load_default=False)


class HelpRequestUpdateSchema(ma.Schema):
    """Owner edits while Pending; only supplied fields are loaded."""

    class Meta:
        unknown = EXCLUDE

    title = fields.String(validate=validate.Length(min=5, max=100))
    description = fields.String(validate=validate.Length(min=10, max=1000))
    category = fields.String(validate=validate.OneOf(CATEGORIES))
    urgency = fields.String(validate=validate.OneOf(URGENCIES))
    location = fields.Nested(LocationSchema)
    estimated_completion_time = UTCDateTime(data_key="estimatedCompletionTime", allow_none=True)
    tags = fields.List(fields.String(validate=validate.Length(max=50)))
    images = fields.List(fields.Nested(ImageSchema))

    @pre_load
    def trim(self, data, **kwargs):
        return strip_strings(data)
