from flask import Blueprint, request, g

from helphub.schemas.request_schema import (
    HelpRequestSchema,
    HelpRequestUpdateSchema,
    ImagesSchema,
    StatusUpdateSchema,
    ApplySchema,
    CancelSchema,
    RatingSchema,
)
from helphub.services import request_service, rating_service
from helphub.utils.pagination import parse_page_args
from helphub.utils.permissions import requires, ADMIN
from helphub.utils.response_formatter import success_response

bp = Blueprint("requests", __name__, url_prefix="/api/v1/requests")


def _json():
    return request.get_json(silent=True) or {}


# ------------------------------------------------------------
#  POST /requests: needy user opens a request
# ------------------------------------------------------------
@bp.route("", methods=["POST"])
@requires("request.create")
def create_request():
    data = HelpRequestSchema().load(_json())
    help_request = request_service.create_request(g.current_user, data)
    return success_response(
        {"request": help_request.to_dict()},
        message="Help request created successfully",
        status=201,
    )


# ------------------------------------------------------------
#  GET /requests: needy: own requests, volunteer: open board, admin: all
# ------------------------------------------------------------
@bp.route("", methods=["GET"])
@requires("request.read")
def list_requests():
    page, limit = parse_page_args(request.args)
    filters = {
        "category": request.args.get("category"),
        "urgency": request.args.get("urgency"),
        "status": request.args.get("status"),
        "search": request.args.get("search"),
        "sort": request.args.get("sort"),
        "lat": request.args.get("lat"),
        "lng": request.args.get("lng"),
        "distance": request.args.get("distance"),
    }
    items, pagination = request_service.list_requests(g.current_user, filters, page, limit)
    return success_response({
        "requests": [r.to_dict() for r in items],
        "pagination": pagination,
    })


# ------------------------------------------------------------
#  volunteer dashboards (declared before /<request_id>)
# ------------------------------------------------------------
@bp.route("/volunteer-stats", methods=["GET"])
@requires("volunteer.stats")
def volunteer_stats():
    return success_response({"stats": request_service.volunteer_stats(g.current_user)})


@bp.route("/volunteer-requests", methods=["GET"])
@requires("volunteer.stats")
def volunteer_requests():
    page, limit = parse_page_args(request.args)
    raw = request.args.get("status")
    statuses = [s.strip() for s in raw.split(",") if s.strip()] if raw else None
    items, pagination = request_service.volunteer_requests(
        g.current_user, statuses, page, limit, sort=request.args.get("sort")
    )
    return success_response({
        "requests": [r.to_dict() for r in items],
        "pagination": pagination,
    })


# ------------------------------------------------------------
#  single request
# ------------------------------------------------------------
@bp.route("/<request_id>", methods=["GET"])
@requires("request.read")
def get_request(request_id):
    help_request = request_service.get_request(g.current_user, request_id)
    include_applications = g.current_user.id == help_request.needy_user_id or g.current_user.role == ADMIN
    return success_response({"request": help_request.to_dict(include_applications=include_applications)})


@bp.route("/<request_id>", methods=["PUT"])
@requires("request.update")
def update_request(request_id):
    data = HelpRequestUpdateSchema().load(_json())
    help_request = request_service.update_request(g.current_user, request_id, data)
    return success_response({"request": help_request.to_dict()}, message="Help request updated successfully")


@bp.route("/<request_id>", methods=["DELETE"])
@requires("request.delete")
def delete_request(request_id):
    request_service.delete_request(g.current_user, request_id)
    return success_response(message="Help request deleted successfully")


@bp.route("/<request_id>/cancel", methods=["POST"])
@requires("request.cancel")
def cancel_request(request_id):
    data = CancelSchema().load(_json())
    help_request = request_service.cancel_request(g.current_user, request_id, data.get("reason"))
    return success_response({"request": help_request.to_dict()}, message="Help request cancelled")


@bp.route("/<request_id>/images", methods=["POST"])
@requires("request.attach_images")
def attach_images(request_id):
    data = ImagesSchema().load(_json())
    help_request = request_service.attach_images(g.current_user, request_id, data["images"])
    return success_response({"request": help_request.to_dict()}, message="Images added successfully")


# ------------------------------------------------------------
#  volunteer transitions
# ------------------------------------------------------------
@bp.route("/<request_id>/apply", methods=["POST"])
@requires("request.apply")
def apply(request_id):
    data = ApplySchema().load(_json())
    application = request_service.apply_to_request(g.current_user, request_id, data.get("message"))
    return success_response(
        {"application": application.to_dict()},
        message="Application submitted successfully",
        status=201,
    )


@bp.route("/<request_id>/accept", methods=["POST"])
@requires("request.accept")
def accept(request_id):
    help_request = request_service.accept_request(g.current_user, request_id)
    return success_response(
        {"request": help_request.to_dict(), "chat_id": help_request.chat_id},
        message="Help request accepted successfully",
    )


@bp.route("/<request_id>/status", methods=["PUT"])
@requires("request.advance")
def update_status(request_id):
    data = StatusUpdateSchema().load(_json())
    help_request = request_service.update_status(
        g.current_user,
        request_id,
        data["status"],
        estimated_completion_time=data.get("estimated_completion_time"),
    )
    return success_response({"request": help_request.to_dict()}, message="Status updated successfully")


# ------------------------------------------------------------
#  rating
# ------------------------------------------------------------
@bp.route("/<request_id>/rate", methods=["POST"])
@requires("request.rate")
def rate(request_id):
    data = RatingSchema().load(_json())
    rating = rating_service.rate_volunteer(g.current_user, request_id, data)
    return success_response(
        {"rating": rating.to_dict()},
        message="Rating submitted successfully",
        status=201,
    )
