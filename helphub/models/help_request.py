from helphub.extensions import db
from datetime import datetime, timedelta
from sqlalchemy import event
from helphub.models.application import RequestApplication  # noqa: F401
import uuid

CATEGORIES = ("Food", "Medical", "Shelter", "Education", "Transportation", "Other")
URGENCIES = ("Low", "Medium", "High")

PENDING = "Pending"
ACCEPTED = "Accepted"
ON_THE_WAY = "On the Way"
COMPLETED = "Completed"
CANCELLED = "Cancelled"
STATUSES = (PENDING, ACCEPTED, ON_THE_WAY, COMPLETED, CANCELLED)

# statuses in which a volunteer is assigned (and a chat thread exists)
ASSIGNED_STATUSES = (ACCEPTED, ON_THE_WAY, COMPLETED)
TERMINAL_STATUSES = (COMPLETED, CANCELLED)

URGENCY_WEIGHT = {"High": 30, "Medium": 20, "Low": 10}
CATEGORY_WEIGHT = {"Medical": 20, "Shelter": 15, "Food": 10}
DEFAULT_CATEGORY_WEIGHT = 5

# (max hours since creation, bonus); older requests get nothing
RECENCY_BONUS = [
    (1, 25),
    (6, 20),
    (24, 15),
    (72, 10),
]


def gen_request_id():
    return f"REQ-{str(uuid.uuid4())[:8]}"


def compute_priority(urgency, category, created_at, now=None):
    now = now or datetime.utcnow()
    created_at = created_at or now

    priority = URGENCY_WEIGHT.get(urgency, 0)

    hours = (now - created_at).total_seconds() / 3600
    for max_hours, bonus in RECENCY_BONUS:
        if hours < max_hours:
            priority += bonus
            break

    priority += CATEGORY_WEIGHT.get(category, DEFAULT_CATEGORY_WEIGHT)
    return priority


class HelpRequest(db.Model):
    __tablename__ = "help_requests"

    __table_args__ = (
        db.Index("idx_help_requests_status_category", "status", "category"),
        db.Index("idx_help_requests_needy_status", "needy_user_id", "status"),
        db.Index("idx_help_requests_volunteer_status", "volunteer_id", "status"),
    )

    id = db.Column(db.String(50), primary_key=True, default=gen_request_id)

    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(30), nullable=False)
    urgency = db.Column(db.String(10), nullable=False, default="Medium")
    status = db.Column(db.String(20), nullable=False, default=PENDING)

    # location
    latitude = db.Column(db.Float, default=0.0)
    longitude = db.Column(db.Float, default=0.0)
    address = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))
    zip_code = db.Column(db.String(20))

    images = db.Column(db.JSON, default=list)
    tags = db.Column(db.JSON, default=list)

    needy_user_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False)
    volunteer_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=True)
    chat_id = db.Column(db.String(50), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    accepted_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    cancellation_reason = db.Column(db.String(500))
    estimated_completion_time = db.Column(db.DateTime)
    actual_completion_time = db.Column(db.DateTime)

    is_urgent = db.Column(db.Boolean, default=False, nullable=False)
    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    is_flagged = db.Column(db.Boolean, default=False, nullable=False)
    flag_reason = db.Column(db.String(500))

    priority = db.Column(db.Integer, default=0, nullable=False)
    views = db.Column(db.Integer, default=0, nullable=False)

    needy_user = db.relationship("User", foreign_keys=[needy_user_id], backref="help_requests", lazy=True)
    volunteer = db.relationship("User", foreign_keys=[volunteer_id], backref="assigned_requests", lazy=True)
    applications = db.relationship(
        "RequestApplication",
        backref="help_request",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="RequestApplication.applied_at",
    )

    def calculate_priority(self, now=None):
        return compute_priority(self.urgency, self.category, self.created_at, now=now)

    @property
    def time_since_creation(self):
        if not self.created_at:
            return 0
        return (datetime.utcnow() - self.created_at).total_seconds()

    @property
    def is_expired(self):
        if not self.created_at or self.status != PENDING:
            return False
        return self.created_at < datetime.utcnow() - timedelta(days=7)

    @property
    def location(self):
        return {
            "type": "Point",
            "coordinates": [self.longitude or 0.0, self.latitude or 0.0],
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
        }

    def public_data(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "urgency": self.urgency,
            "status": self.status,
            "location": self.location,
            "images": self.images or [],
            "tags": self.tags or [],
            "is_urgent": self.is_urgent,
            "is_verified": self.is_verified,
            "priority": self.priority,
            "views": self.views,
            "applications_count": len(self.applications),
            "created_at": self.created_at.isoformat() + "Z" if self.created_at else None,
            "updated_at": self.updated_at.isoformat() + "Z" if self.updated_at else None,
            "time_since_creation": self.time_since_creation,
            "is_expired": self.is_expired,
        }

    def to_dict(self, include_applications=False):
        data = self.public_data()
        data.update({
            "needy_user": self.needy_user.summary() if self.needy_user else None,
            "volunteer": self.volunteer.summary() if self.volunteer else None,
            "chat_id": self.chat_id,
            "accepted_at": self.accepted_at.isoformat() + "Z" if self.accepted_at else None,
            "completed_at": self.completed_at.isoformat() + "Z" if self.completed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() + "Z" if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
            "estimated_completion_time": (
                self.estimated_completion_time.isoformat() + "Z" if self.estimated_completion_time else None
            ),
            "actual_completion_time": (
                self.actual_completion_time.isoformat() + "Z" if self.actual_completion_time else None
            ),
            "is_flagged": self.is_flagged,
            "flag_reason": self.flag_reason,
        })
        if include_applications:
            data["applications"] = [a.to_dict() for a in self.applications]
        return data


@event.listens_for(HelpRequest, "before_insert")
def _priority_on_insert(mapper, connection, target):
    if target.created_at is None:
        target.created_at = datetime.utcnow()
    target.is_urgent = target.urgency == "High"
    target.priority = target.calculate_priority()


@event.listens_for(HelpRequest, "before_update")
def _priority_on_update(mapper, connection, target):
    target.is_urgent = target.urgency == "High"
    target.priority = target.calculate_priority()
