import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from helphub.extensions import db
from helphub.models.help_request import COMPLETED
from helphub.models.rating import Rating
from helphub.models.user import User
from helphub.services.request_service import get_request_or_404
from helphub.utils.exceptions import ConflictError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)


def recompute_average(user_id):
    """Refresh the cached average from every rating the user has received."""
    avg, count = (
        db.session.query(func.avg(Rating.rating), func.count(Rating.id))
        .filter(Rating.rated_id == user_id)
        .one()
    )
    User.query.filter_by(id=user_id).update(
        {
            User.average_rating: round(float(avg or 0), 2),
            User.rating_count: count or 0,
        },
        synchronize_session=False,
    )


def rate_volunteer(user, request_id, data):
    help_request = get_request_or_404(request_id)
    if help_request.needy_user_id != user.id:
        raise ForbiddenError("Only the owner of this request can rate the volunteer")
    if help_request.status != COMPLETED or not help_request.volunteer_id:
        raise ConflictError("INVALID_TRANSITION", "Can only rate completed requests")

    existing = Rating.query.filter_by(
        help_request_id=help_request.id,
        rater_id=user.id,
        rated_id=help_request.volunteer_id,
    ).first()
    if existing:
        raise ConflictError("ALREADY_RATED", "You have already rated this volunteer")

    rating = Rating(
        help_request_id=help_request.id,
        rater_id=user.id,
        rated_id=help_request.volunteer_id,
        rating=data["rating"],
        review=data.get("review"),
        categories=data.get("categories") or [],
        is_anonymous=data.get("is_anonymous", False),
    )
    db.session.add(rating)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("ALREADY_RATED", "You have already rated this volunteer")

    recompute_average(help_request.volunteer_id)
    db.session.commit()

    logger.info("Request %s: volunteer %s rated %s", help_request.id, help_request.volunteer_id, rating.rating)
    return rating


def rating_summary(user_id, recent_limit=10):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    rows = (
        db.session.query(Rating.rating, func.count(Rating.id))
        .filter(Rating.rated_id == user_id)
        .group_by(Rating.rating)
        .all()
    )
    distribution = {str(star): 0 for star in range(1, 6)}
    total = 0
    weighted = 0
    for value, count in rows:
        distribution[str(value)] = count
        total += count
        weighted += value * count

    recent = (
        Rating.query.filter_by(rated_id=user_id)
        .order_by(Rating.created_at.desc())
        .limit(recent_limit)
        .all()
    )

    return {
        "average": round(weighted / total, 1) if total else 0.0,
        "total": total,
        "distribution": distribution,
        "recent": [r.public_data() for r in recent],
    }
