import logging

from sqlalchemy import or_

from helphub.extensions import db
from helphub.models.help_request import HelpRequest, CATEGORIES, STATUSES
from helphub.models.rating import Rating
from helphub.models.user import User
from helphub.services import reward_service
from helphub.services.request_service import get_request_or_404, purge_request
from helphub.services.rating_service import recompute_average
from helphub.utils.exceptions import NotFoundError, ValidationError
from helphub.utils.pagination import paginate_query
from helphub.utils.permissions import ROLES

logger = logging.getLogger(__name__)

VERIFIED_BADGE = "Verified"


# -----------------------------------------------------------
# requests
# -----------------------------------------------------------
def list_all_requests(filters, page=1, limit=10):
    q = HelpRequest.query

    status = filters.get("status")
    if status:
        if status not in STATUSES:
            raise ValidationError("Invalid status", {"status": [f"Must be one of: {', '.join(STATUSES)}"]})
        q = q.filter(HelpRequest.status == status)

    category = filters.get("category")
    if category:
        if category not in CATEGORIES:
            raise ValidationError("Invalid category", {"category": [f"Must be one of: {', '.join(CATEGORIES)}"]})
        q = q.filter(HelpRequest.category == category)

    if filters.get("is_flagged") is not None:
        q = q.filter(HelpRequest.is_flagged == filters["is_flagged"])

    search = filters.get("search")
    if search:
        like = f"%{search}%"
        q = q.filter(or_(HelpRequest.title.ilike(like), HelpRequest.description.ilike(like)))

    q = q.order_by(HelpRequest.created_at.desc())
    return paginate_query(q, page, limit)


def flag_request(admin, request_id, is_flagged, reason=None):
    help_request = get_request_or_404(request_id)
    help_request.is_flagged = bool(is_flagged)
    help_request.flag_reason = reason if is_flagged else None
    db.session.commit()
    logger.info("Admin %s set flag=%s on request %s", admin.id, is_flagged, request_id)
    return help_request


def admin_delete_request(admin, request_id):
    help_request = get_request_or_404(request_id)
    volunteer_id = help_request.volunteer_id
    purge_request(help_request)
    db.session.flush()
    if volunteer_id:
        # ratings went with the request
        recompute_average(volunteer_id)
    db.session.commit()
    logger.warning("Admin %s deleted request %s", admin.id, request_id)


def flagged_content():
    requests = (
        HelpRequest.query.filter_by(is_flagged=True)
        .order_by(HelpRequest.updated_at.desc())
        .all()
    )
    ratings = (
        Rating.query.filter_by(is_flagged=True)
        .order_by(Rating.created_at.desc())
        .all()
    )
    return requests, ratings


def flag_rating(admin, rating_id, is_flagged, reason=None):
    rating = db.session.get(Rating, rating_id)
    if not rating:
        raise NotFoundError("Rating not found")
    rating.is_flagged = bool(is_flagged)
    rating.flag_reason = reason if is_flagged else None
    db.session.commit()
    logger.info("Admin %s set flag=%s on rating %s", admin.id, is_flagged, rating_id)
    return rating


# -----------------------------------------------------------
# users
# -----------------------------------------------------------
def list_users(filters, page=1, limit=10):
    q = User.query

    role = filters.get("role")
    if role:
        if role not in ROLES:
            raise ValidationError("Invalid role", {"role": [f"Must be one of: {', '.join(ROLES)}"]})
        q = q.filter(User.role == role)
    if filters.get("is_verified") is not None:
        q = q.filter(User.is_verified == filters["is_verified"])
    if filters.get("is_blocked") is not None:
        q = q.filter(User.is_blocked == filters["is_blocked"])

    search = filters.get("search")
    if search:
        like = f"%{search}%"
        q = q.filter(or_(User.name.ilike(like), User.email.ilike(like)))

    q = q.order_by(User.created_at.desc())
    return paginate_query(q, page, limit)


def update_user_status(admin, user_id, data):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    if "is_blocked" in data:
        user.is_blocked = data["is_blocked"]
    if "role" in data:
        user.role = data["role"]
    if "is_verified" in data:
        user.is_verified = data["is_verified"]
        if user.is_verified:
            reward_service.grant_badge(user.id, VERIFIED_BADGE)

    db.session.commit()
    logger.info("Admin %s updated user %s: %s", admin.id, user_id, sorted(data))
    return user


def get_user_detail(user_id):
    """A user together with the requests they posted or took on and the ratings they received."""
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    requests = (
        HelpRequest.query.filter(
            or_(HelpRequest.needy_user_id == user.id, HelpRequest.volunteer_id == user.id)
        )
        .order_by(HelpRequest.created_at.desc())
        .all()
    )
    ratings = (
        Rating.query.filter_by(rated_id=user.id)
        .order_by(Rating.created_at.desc())
        .all()
    )
    return user, requests, ratings
