from helphub.extensions import db
from helphub.models.badge import UserBadge  # noqa: F401
from datetime import datetime
import uuid


def gen_uuid(prefix=None):
    uid = str(uuid.uuid4())
    return f"{prefix}-{uid}" if prefix else uid


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(50), primary_key=True, default=lambda: gen_uuid("usr"))
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(50), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="needy", index=True)
    avatar_url = db.Column(db.String(1024), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    is_blocked = db.Column(db.Boolean, default=False, nullable=False)

    # stats, mutated by request lifecycle side effects
    requests_created = db.Column(db.Integer, default=0, nullable=False)
    requests_completed = db.Column(db.Integer, default=0, nullable=False)
    points = db.Column(db.Integer, default=0, nullable=False)
    average_rating = db.Column(db.Float, default=0.0, nullable=False)
    rating_count = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_active = db.Column(db.DateTime, default=datetime.utcnow)

    badges = db.relationship(
        "UserBadge",
        backref="user",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="UserBadge.granted_at",
    )

    @property
    def badge_names(self):
        return [b.badge for b in self.badges]

    def summary(self):
        return {
            "id": self.id,
            "name": self.name,
            "avatar": self.avatar_url,
            "role": self.role,
        }

    def public_profile(self):
        return {
            "id": self.id,
            "name": self.name,
            "avatar": self.avatar_url,
            "role": self.role,
            "address": self.address,
            "is_verified": self.is_verified,
            "stats": {
                "requests_created": self.requests_created,
                "requests_completed": self.requests_completed,
                "average_rating": self.average_rating,
                "rating_count": self.rating_count,
                "points": self.points,
                "badges": self.badge_names,
            },
            "last_active": self.last_active.isoformat() + "Z" if self.last_active else None,
        }

    def to_dict(self):
        data = self.public_profile()
        data.update({
            "email": self.email,
            "phone": self.phone,
            "is_blocked": self.is_blocked,
            "created_at": self.created_at.isoformat() + "Z" if self.created_at else None,
        })
        return data
