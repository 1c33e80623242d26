import logging
from sqlalchemy.exc import IntegrityError
from helphub.extensions import db
from helphub.models.user import User
from helphub.models.badge import UserBadge

logger = logging.getLogger(__name__)

COMPLETION_POINTS = {"High": 50, "Medium": 30, "Low": 20}

BADGE_THRESHOLDS = [
    (10, "Bronze"),
    (100, "Silver"),
    (500, "Gold"),
    (1000, "Hero"),
]


def points_for(urgency):
    return COMPLETION_POINTS.get(urgency, COMPLETION_POINTS["Low"])


def badges_for_points(points):
    return [badge for threshold, badge in BADGE_THRESHOLDS if points >= threshold]


def grant_badge(user_id, badge):
    """Insert a badge row unless the user already holds it. Returns True when newly granted."""
    exists = UserBadge.query.filter_by(user_id=user_id, badge=badge).first()
    if exists:
        return False
    try:
        with db.session.begin_nested():
            db.session.add(UserBadge(user_id=user_id, badge=badge))
    except IntegrityError:
        # a concurrent completion granted it first
        return False
    logger.info("Badge %s granted to %s", badge, user_id)
    return True


def award_completion(user_id, urgency):
    """
    Credit a volunteer for a completed request. Runs inside the caller's
    transaction; counters are SQL increments so concurrent completions by the
    same volunteer add up instead of overwriting each other.
    """
    points = points_for(urgency)
    User.query.filter_by(id=user_id).update(
        {
            User.points: User.points + points,
            User.requests_completed: User.requests_completed + 1,
        },
        synchronize_session=False,
    )
    total = db.session.query(User.points).filter(User.id == user_id).scalar() or 0

    granted = [badge for badge in badges_for_points(total) if grant_badge(user_id, badge)]
    logger.info("Awarded %s points to %s (total %s, new badges %s)", points, user_id, total, granted)
    return points, granted
