from flask import Blueprint, current_app, request, g

from helphub.extensions import limiter
from helphub.schemas.user_schema import RegisterSchema, LoginSchema
from helphub.services.auth_service import register_user, authenticate_user, generate_token_for_user
from helphub.utils.permissions import requires
from helphub.utils.response_formatter import success_response

bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def auth_rate_limit():
    return current_app.config["AUTH_RATE_LIMIT"]


# register and login draw from one budget per client
auth_limit = limiter.shared_limit(auth_rate_limit, scope="auth")


@bp.route("/register", methods=["POST"])
@auth_limit
def register():
    data = RegisterSchema().load(request.get_json(silent=True) or {})
    user = register_user(
        data["email"],
        data["password"],
        data["name"],
        role=data["role"],
        phone=data.get("phone"),
        address=data.get("address"),
    )
    return success_response({
        "user": user.to_dict(),
        "access_token": generate_token_for_user(user),
    }, status=201)


@bp.route("/login", methods=["POST"])
@auth_limit
def login():
    data = LoginSchema().load(request.get_json(silent=True) or {})
    user = authenticate_user(data["email"], data["password"])
    return success_response({
        "user": user.to_dict(),
        "access_token": generate_token_for_user(user),
    })


@bp.route("/me", methods=["GET"])
@requires("account.read")
def me():
    return success_response({"user": g.current_user.to_dict()})
