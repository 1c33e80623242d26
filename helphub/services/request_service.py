"""
Help request lifecycle.

Every transition is applied as a single compare-and-set UPDATE guarded by the
expected source status, so two actors racing on the same request can never
both succeed. The loser gets a ConflictError and nothing is written.
"""
import logging
import math
from datetime import datetime

from flask import current_app
from sqlalchemy import or_, func
from sqlalchemy.exc import IntegrityError

from helphub.extensions import db
from helphub.models.application import (
    RequestApplication,
    APPLICATION_PENDING,
    APPLICATION_ACCEPTED,
    APPLICATION_REJECTED,
)
from helphub.models.chat import Chat
from helphub.models.help_request import (
    HelpRequest,
    CATEGORIES,
    URGENCIES,
    STATUSES,
    PENDING,
    ACCEPTED,
    ON_THE_WAY,
    COMPLETED,
    CANCELLED,
    compute_priority,
)
from helphub.models.message import Message
from helphub.models.user import User
from helphub.services import chat_service, notification_service, reward_service
from helphub.services.realtime import get_fanout
from helphub.utils.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from helphub.utils.pagination import paginate_query
from helphub.utils.permissions import NEEDY, VOLUNTEER

logger = logging.getLogger(__name__)

# target status -> statuses it may be reached from by the assigned volunteer
VOLUNTEER_TRANSITIONS = {
    ON_THE_WAY: (ACCEPTED,),
    COMPLETED: (ACCEPTED, ON_THE_WAY),
}

SORT_FIELDS = {
    "created_at": HelpRequest.created_at,
    "createdAt": HelpRequest.created_at,
    "updated_at": HelpRequest.updated_at,
    "updatedAt": HelpRequest.updated_at,
    "priority": HelpRequest.priority,
    "urgency": HelpRequest.urgency,
    "views": HelpRequest.views,
}

KM_PER_DEGREE = 111.0


# -----------------------------------------------------------
# helpers
# -----------------------------------------------------------
def get_request_or_404(request_id):
    help_request = db.session.get(HelpRequest, request_id)
    if not help_request:
        raise NotFoundError("Help request not found")
    return help_request


def _lock_request(request_id):
    help_request = (
        HelpRequest.query.filter_by(id=request_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not help_request:
        raise NotFoundError("Help request not found")
    return help_request


def _require_owner(help_request, user):
    if help_request.needy_user_id != user.id:
        raise ForbiddenError("Only the owner of this request can do that")


def _require_pending(help_request, action):
    if help_request.status != PENDING:
        raise ConflictError(
            "INVALID_TRANSITION",
            f"Cannot {action} a request that is {help_request.status}",
            {"status": help_request.status},
        )


def _sort_clause(sort, default="-created_at"):
    sort = sort or default
    descending = sort.startswith("-")
    column = SORT_FIELDS.get(sort.lstrip("-"))
    if column is None:
        raise ValidationError("Invalid sort field", {"sort": [f"Unknown field '{sort.lstrip('-')}'"]})
    return column.desc() if descending else column.asc()


def _apply_location(help_request, location):
    if not location:
        return
    if location.get("address"):
        help_request.address = location["address"]
    coordinates = location.get("coordinates")
    if coordinates:
        help_request.longitude, help_request.latitude = coordinates[0], coordinates[1]
    for key in ("city", "state", "zip_code"):
        if key in location:
            setattr(help_request, key, location[key])


def _after_transition(help_request, accepted=False):
    """Notify and broadcast once the transition is committed."""
    try:
        get_fanout().request_status_changed(help_request)
    except Exception:
        logger.exception("Status broadcast failed for request %s", help_request.id)

    if accepted:
        notification_service.notify_request_accepted(help_request)
    elif help_request.status != CANCELLED:
        notification_service.notify_status_update(help_request)


# -----------------------------------------------------------
# needy user operations
# -----------------------------------------------------------
def create_request(user, data):
    location = data["location"]
    coordinates = location.get("coordinates") or [0.0, 0.0]

    help_request = HelpRequest(
        title=data["title"],
        description=data["description"],
        category=data["category"],
        urgency=data["urgency"],
        address=location["address"],
        longitude=coordinates[0],
        latitude=coordinates[1],
        city=location.get("city"),
        state=location.get("state"),
        zip_code=location.get("zip_code"),
        images=data.get("images") or [],
        tags=data.get("tags") or [],
        estimated_completion_time=data.get("estimated_completion_time"),
        needy_user_id=user.id,
        status=PENDING,
    )
    db.session.add(help_request)
    User.query.filter_by(id=user.id).update(
        {User.requests_created: User.requests_created + 1},
        synchronize_session=False,
    )
    db.session.commit()

    logger.info("Help request %s created by %s", help_request.id, user.id)
    return help_request


def update_request(user, request_id, data):
    help_request = _lock_request(request_id)
    _require_owner(help_request, user)
    _require_pending(help_request, "update")

    for key in ("title", "description", "category", "urgency", "tags", "images", "estimated_completion_time"):
        if key in data:
            setattr(help_request, key, data[key])
    _apply_location(help_request, data.get("location"))

    db.session.commit()
    logger.info("Help request %s updated by %s", help_request.id, user.id)
    return help_request


def attach_images(user, request_id, images):
    help_request = _lock_request(request_id)
    _require_owner(help_request, user)

    limit = current_app.config["MAX_IMAGES_PER_UPLOAD"]
    if not images or len(images) > limit:
        raise ValidationError("Invalid images", {"images": [f"Provide between 1 and {limit} images"]})

    # reassign so the JSON column registers the change
    help_request.images = list(help_request.images or []) + list(images)
    db.session.commit()
    return help_request


def cancel_request(user, request_id, reason=None):
    help_request = get_request_or_404(request_id)
    _require_owner(help_request, user)
    _require_pending(help_request, "cancel")

    now = datetime.utcnow()
    updated = HelpRequest.query.filter(
        HelpRequest.id == help_request.id,
        HelpRequest.status == PENDING,
    ).update(
        {
            HelpRequest.status: CANCELLED,
            HelpRequest.cancelled_at: now,
            HelpRequest.cancellation_reason: reason,
            HelpRequest.updated_at: now,
        },
        synchronize_session=False,
    )
    if updated != 1:
        db.session.rollback()
        raise ConflictError("INVALID_TRANSITION", "Cannot cancel a request that is no longer pending")

    db.session.commit()
    logger.info("Help request %s cancelled by %s", help_request.id, user.id)
    _after_transition(help_request)
    return help_request


def purge_request(help_request):
    """Delete a request with its chat, messages, applications and ratings. Caller commits."""
    chat = Chat.query.filter_by(help_request_id=help_request.id).first()
    if chat:
        Message.query.filter_by(chat_id=chat.id).delete(synchronize_session=False)
    db.session.delete(help_request)


def delete_request(user, request_id):
    help_request = _lock_request(request_id)
    _require_owner(help_request, user)
    _require_pending(help_request, "delete")

    purge_request(help_request)
    db.session.commit()
    logger.info("Help request %s deleted by %s", request_id, user.id)


# -----------------------------------------------------------
# volunteer operations
# -----------------------------------------------------------
def apply_to_request(user, request_id, message=None):
    help_request = get_request_or_404(request_id)
    if help_request.status != PENDING:
        raise ConflictError("NOT_AVAILABLE", "Request is not available for applications")

    existing = RequestApplication.query.filter_by(
        help_request_id=help_request.id, volunteer_id=user.id
    ).first()
    if existing:
        raise ConflictError("ALREADY_APPLIED", "You have already applied for this request")

    application = RequestApplication(
        help_request_id=help_request.id,
        volunteer_id=user.id,
        message=message,
        status=APPLICATION_PENDING,
    )
    db.session.add(application)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("ALREADY_APPLIED", "You have already applied for this request")

    logger.info("Volunteer %s applied to request %s", user.id, help_request.id)
    return application


def accept_request(user, request_id):
    help_request = get_request_or_404(request_id)
    if help_request.status != PENDING:
        raise ConflictError("NOT_AVAILABLE", "Request is not available for acceptance")
    if help_request.needy_user_id == user.id:
        raise ForbiddenError("You cannot accept your own request")

    now = datetime.utcnow()
    updated = HelpRequest.query.filter(
        HelpRequest.id == help_request.id,
        HelpRequest.status == PENDING,
        HelpRequest.volunteer_id.is_(None),
    ).update(
        {
            HelpRequest.status: ACCEPTED,
            HelpRequest.volunteer_id: user.id,
            HelpRequest.accepted_at: now,
            HelpRequest.updated_at: now,
            HelpRequest.priority: compute_priority(
                help_request.urgency, help_request.category, help_request.created_at, now
            ),
        },
        synchronize_session=False,
    )
    if updated != 1:
        db.session.rollback()
        logger.info("Volunteer %s lost the race to accept %s", user.id, help_request.id)
        raise ConflictError("NOT_AVAILABLE", "Request is not available for acceptance")

    chat = chat_service.find_or_create_chat(help_request.id, help_request.needy_user_id, user.id)
    HelpRequest.query.filter_by(id=help_request.id).update(
        {HelpRequest.chat_id: chat.id},
        synchronize_session=False,
    )

    RequestApplication.query.filter_by(help_request_id=help_request.id, volunteer_id=user.id).update(
        {RequestApplication.status: APPLICATION_ACCEPTED},
        synchronize_session=False,
    )
    RequestApplication.query.filter(
        RequestApplication.help_request_id == help_request.id,
        RequestApplication.volunteer_id != user.id,
        RequestApplication.status == APPLICATION_PENDING,
    ).update(
        {RequestApplication.status: APPLICATION_REJECTED},
        synchronize_session=False,
    )

    db.session.commit()
    logger.info("Help request %s accepted by %s (chat %s)", help_request.id, user.id, chat.id)

    _after_transition(help_request, accepted=True)
    return help_request


def update_status(user, request_id, status, estimated_completion_time=None):
    if status not in VOLUNTEER_TRANSITIONS:
        raise ValidationError(
            "Invalid status",
            {"status": [f"Must be one of: {', '.join(VOLUNTEER_TRANSITIONS)}"]},
        )

    help_request = get_request_or_404(request_id)
    if help_request.volunteer_id != user.id:
        raise ForbiddenError("Only the assigned volunteer can update this request")

    sources = VOLUNTEER_TRANSITIONS[status]
    if help_request.status not in sources:
        raise ConflictError(
            "INVALID_TRANSITION",
            f"Cannot change status from {help_request.status} to {status}",
            {"from": help_request.status, "to": status},
        )

    now = datetime.utcnow()
    values = {
        HelpRequest.status: status,
        HelpRequest.updated_at: now,
        HelpRequest.priority: compute_priority(
            help_request.urgency, help_request.category, help_request.created_at, now
        ),
    }
    if status == ON_THE_WAY and estimated_completion_time:
        values[HelpRequest.estimated_completion_time] = estimated_completion_time
    if status == COMPLETED:
        values[HelpRequest.completed_at] = now
        values[HelpRequest.actual_completion_time] = now

    updated = HelpRequest.query.filter(
        HelpRequest.id == help_request.id,
        HelpRequest.volunteer_id == user.id,
        HelpRequest.status.in_(sources),
    ).update(values, synchronize_session=False)
    if updated != 1:
        db.session.rollback()
        raise ConflictError("INVALID_TRANSITION", f"Cannot change status to {status}")

    if status == COMPLETED:
        reward_service.award_completion(user.id, help_request.urgency)

    db.session.commit()
    logger.info("Help request %s moved to %s by %s", help_request.id, status, user.id)

    _after_transition(help_request)
    return help_request


# -----------------------------------------------------------
# reads
# -----------------------------------------------------------
def get_request(user, request_id):
    help_request = get_request_or_404(request_id)
    if user.role == NEEDY and help_request.needy_user_id != user.id:
        raise ForbiddenError("You can only view your own requests")

    HelpRequest.query.filter_by(id=help_request.id).update(
        {HelpRequest.views: HelpRequest.views + 1},
        synchronize_session=False,
    )
    db.session.commit()
    return help_request


def _check_choice(name, value, choices):
    if value and value not in choices:
        raise ValidationError(f"Invalid {name}", {name: [f"Must be one of: {', '.join(choices)}"]})


def _parse_near(filters):
    """Return ``(lat, lng, km)`` when a distance filter is requested, else None."""
    raw = {key: filters.get(key) for key in ("lat", "lng", "distance")}
    given = [key for key, value in raw.items() if value not in (None, "")]
    if not given:
        return None
    if len(given) != 3:
        missing = [key for key in raw if key not in given]
        raise ValidationError(
            "Incomplete distance filter",
            {key: ["Required when filtering by distance"] for key in missing},
        )

    errors = {}
    values = {}
    for key, value in raw.items():
        try:
            values[key] = float(value)
        except (TypeError, ValueError):
            errors[key] = ["Must be a number"]
            continue
        if not math.isfinite(values[key]):
            errors[key] = ["Must be a number"]
    if errors:
        raise ValidationError("Invalid distance filter", errors)

    lat, lng, km = values["lat"], values["lng"], values["distance"]
    if not -90 <= lat <= 90:
        errors["lat"] = ["Must be between -90 and 90"]
    if not -180 <= lng <= 180:
        errors["lng"] = ["Must be between -180 and 180"]
    if km <= 0:
        errors["distance"] = ["Must be greater than 0"]
    if errors:
        raise ValidationError("Invalid distance filter", errors)
    return lat, lng, km


def _near(q, lat, lng, km):
    """
    Restrict ``q`` to requests within ``km`` of the point and return it with
    the squared-distance expression used to order nearest first.

    Uses a bounding box plus an equirectangular approximation, which is plain
    column arithmetic and runs the same on SQLite and PostgreSQL.
    """
    lng_scale = max(math.cos(math.radians(lat)), 0.01)
    dlat = km / KM_PER_DEGREE
    dlng = dlat / lng_scale

    dy = HelpRequest.latitude - lat
    dx = (HelpRequest.longitude - lng) * lng_scale
    squared = dy * dy + dx * dx

    q = q.filter(
        HelpRequest.latitude.between(lat - dlat, lat + dlat),
        HelpRequest.longitude.between(lng - dlng, lng + dlng),
        squared <= dlat * dlat,
    )
    return q, squared


def list_requests(user, filters, page=1, limit=10):
    category = filters.get("category")
    urgency = filters.get("urgency")
    status = filters.get("status")
    search = filters.get("search")

    _check_choice("category", category, CATEGORIES)
    _check_choice("urgency", urgency, URGENCIES)
    _check_choice("status", status, STATUSES)

    q = HelpRequest.query
    if user.role == VOLUNTEER:
        # volunteers browse the open board only
        q = q.filter(HelpRequest.status == PENDING)
    else:
        if user.role == NEEDY:
            q = q.filter(HelpRequest.needy_user_id == user.id)
        if status:
            q = q.filter(HelpRequest.status == status)

    if category:
        q = q.filter(HelpRequest.category == category)
    if urgency:
        q = q.filter(HelpRequest.urgency == urgency)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(HelpRequest.title.ilike(like), HelpRequest.description.ilike(like)))

    near = _parse_near(filters)
    if near:
        q, squared = _near(q, *near)

    if near and not filters.get("sort"):
        # nearest first
        q = q.order_by(squared.asc(), HelpRequest.created_at.desc())
    else:
        q = q.order_by(_sort_clause(filters.get("sort")))
    return paginate_query(q, page, limit)


def volunteer_requests(user, statuses=None, page=1, limit=10, sort=None):
    statuses = statuses or [ACCEPTED, ON_THE_WAY]
    for status in statuses:
        _check_choice("status", status, STATUSES)

    q = HelpRequest.query.filter(
        HelpRequest.volunteer_id == user.id,
        HelpRequest.status.in_(statuses),
    ).order_by(_sort_clause(sort, default="-updated_at"))
    return paginate_query(q, page, limit)


def volunteer_stats(user):
    counts = dict(
        db.session.query(HelpRequest.status, func.count(HelpRequest.id))
        .filter(HelpRequest.volunteer_id == user.id)
        .group_by(HelpRequest.status)
        .all()
    )
    applications = RequestApplication.query.filter_by(volunteer_id=user.id).count()
    user = db.session.get(User, user.id)

    return {
        "total_accepted": sum(counts.get(s, 0) for s in (ACCEPTED, ON_THE_WAY, COMPLETED)),
        "active": counts.get(ACCEPTED, 0) + counts.get(ON_THE_WAY, 0),
        "on_the_way": counts.get(ON_THE_WAY, 0),
        "completed": counts.get(COMPLETED, 0),
        "applications": applications,
        "points": user.points,
        "badges": user.badge_names,
        "average_rating": user.average_rating,
        "rating_count": user.rating_count,
    }
