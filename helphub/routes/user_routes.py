from flask import Blueprint

from flask_jwt_extended import jwt_required

from helphub.extensions import db
from helphub.models.user import User
from helphub.services.rating_service import rating_summary
from helphub.utils.response_formatter import success_response, error_response

bp = Blueprint("users", __name__, url_prefix="/api/v1/users")


@bp.route("/<user_id>", methods=["GET"])
@jwt_required()
def get_profile(user_id):
    user = db.session.get(User, user_id)
    if not user:
        return error_response("NOT_FOUND", "User not found", status=404)
    return success_response({"user": user.public_profile()})


@bp.route("/<user_id>/ratings", methods=["GET"])
@jwt_required()
def get_ratings(user_id):
    return success_response({"ratings": rating_summary(user_id)})
