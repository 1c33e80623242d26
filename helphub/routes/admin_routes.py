from flask import Blueprint, request, g

from helphub.schemas.user_schema import UserStatusSchema, FlagSchema
from helphub.services import admin_service
from helphub.services.leaderboard_service import get_leaderboard
from helphub.utils.pagination import parse_page_args
from helphub.utils.permissions import requires
from helphub.utils.response_formatter import success_response

bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")


def _bool_arg(name):
    value = request.args.get(name)
    if value is None or value == "":
        return None
    return value.strip().lower() in ("1", "true", "yes")


# ------------------------------------------------------------
#  requests
# ------------------------------------------------------------
@bp.route("/requests", methods=["GET"])
@requires("admin.view_all")
def list_requests():
    page, limit = parse_page_args(request.args)
    filters = {
        "status": request.args.get("status"),
        "category": request.args.get("category"),
        "is_flagged": _bool_arg("isFlagged"),
        "search": request.args.get("search"),
    }
    items, pagination = admin_service.list_all_requests(filters, page, limit)
    return success_response({
        "requests": [r.to_dict() for r in items],
        "pagination": pagination,
    })


@bp.route("/requests/<request_id>/flag", methods=["PUT"])
@requires("admin.flag")
def flag_request(request_id):
    data = FlagSchema().load(request.get_json(silent=True) or {})
    help_request = admin_service.flag_request(g.current_user, request_id, data["is_flagged"], data.get("flag_reason"))
    return success_response({"request": help_request.to_dict()})


@bp.route("/requests/<request_id>", methods=["DELETE"])
@requires("admin.delete_any")
def delete_request(request_id):
    admin_service.admin_delete_request(g.current_user, request_id)
    return success_response(message="Help request deleted successfully")


@bp.route("/flagged", methods=["GET"])
@requires("admin.view_all")
def flagged():
    requests, ratings = admin_service.flagged_content()
    return success_response({
        "requests": [r.to_dict() for r in requests],
        "ratings": [r.to_dict() for r in ratings],
    })


@bp.route("/ratings/<rating_id>/flag", methods=["PUT"])
@requires("admin.flag")
def flag_rating(rating_id):
    data = FlagSchema().load(request.get_json(silent=True) or {})
    rating = admin_service.flag_rating(g.current_user, rating_id, data["is_flagged"], data.get("flag_reason"))
    return success_response({"rating": rating.to_dict()})


# ------------------------------------------------------------
#  users
# ------------------------------------------------------------
@bp.route("/users", methods=["GET"])
@requires("admin.moderate_users")
def list_users():
    page, limit = parse_page_args(request.args)
    filters = {
        "role": request.args.get("role"),
        "is_verified": _bool_arg("isVerified"),
        "is_blocked": _bool_arg("isBlocked"),
        "search": request.args.get("search"),
    }
    items, pagination = admin_service.list_users(filters, page, limit)
    return success_response({
        "users": [u.to_dict() for u in items],
        "pagination": pagination,
    })


@bp.route("/users/<user_id>", methods=["GET"])
@requires("admin.moderate_users")
def get_user(user_id):
    user, requests, ratings = admin_service.get_user_detail(user_id)
    return success_response({
        "user": user.to_dict(),
        "requests": [r.to_dict() for r in requests],
        "ratings": [r.to_dict() for r in ratings],
    })


@bp.route("/users/<user_id>/status", methods=["PUT"])
@requires("admin.moderate_users")
def update_user_status(user_id):
    data = UserStatusSchema().load(request.get_json(silent=True) or {})
    user = admin_service.update_user_status(g.current_user, user_id, data)
    return success_response({"user": user.to_dict()})


@bp.route("/leaderboard", methods=["GET"])
@requires("admin.leaderboard")
def leaderboard():
    limit = request.args.get("limit", 20, type=int)
    return success_response({"leaderboard": get_leaderboard(limit=min(max(limit, 1), 100))})
