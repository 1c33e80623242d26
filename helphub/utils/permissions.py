from collections import namedtuple
from functools import wraps

from flask import g
from flask_jwt_extended import jwt_required, get_jwt_identity

from helphub.extensions import db
from helphub.models.user import User
from helphub.utils.exceptions import ForbiddenError, ServiceError

NEEDY = "needy"
VOLUNTEER = "volunteer"
ADMIN = "admin"
ROLES = (NEEDY, VOLUNTEER, ADMIN)

# role -> operations it may invoke. Ownership, assignment and chat membership
# are checked by the services once the role has passed.
CAPABILITIES = {
    NEEDY: frozenset({
        "account.read",
        "request.create",
        "request.read",
        "request.update",
        "request.cancel",
        "request.delete",
        "request.attach_images",
        "request.rate",
        "chat.use",
    }),
    VOLUNTEER: frozenset({
        "account.read",
        "request.read",
        "request.apply",
        "request.accept",
        "request.advance",
        "volunteer.stats",
        "chat.use",
    }),
    ADMIN: frozenset({
        "account.read",
        "request.read",
        "admin.view_all",
        "admin.flag",
        "admin.delete_any",
        "admin.moderate_users",
        "admin.leaderboard",
    }),
}

Decision = namedtuple("Decision", ["allowed", "reason"])


def check(user, operation):
    """Evaluate the capability table for ``user`` and ``operation``."""
    if user is None:
        return Decision(False, "Authentication required")
    if user.is_blocked:
        return Decision(False, "Account is blocked")
    allowed = CAPABILITIES.get(user.role, frozenset())
    if operation not in allowed:
        return Decision(False, f"Role '{user.role}' may not perform {operation}")
    return Decision(True, None)


def authorize(user, operation):
    decision = check(user, operation)
    if not decision.allowed:
        raise ForbiddenError(decision.reason)
    return user


def requires(operation):
    """Route decorator: JWT required, load the actor into ``g.current_user``, gate the operation."""

    def decorator(fn):
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, **kwargs):
            user = db.session.get(User, get_jwt_identity())
            if user is None:
                raise ServiceError("UNAUTHORIZED", "User not found", status=401)
            authorize(user, operation)
            g.current_user = user
            return fn(*args, **kwargs)

        return wrapper

    return decorator
