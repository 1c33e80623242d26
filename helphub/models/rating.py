from helphub.extensions import db
from sqlalchemy.sql import func
import uuid

RATING_CATEGORIES = ("Punctuality", "Communication", "Helpfulness", "Professionalism", "Overall")


def gen_uuid(prefix="rat"):
    return f"{prefix}-{str(uuid.uuid4())[:8]}"


class Rating(db.Model):
    __tablename__ = "ratings"

    __table_args__ = (
        db.UniqueConstraint("help_request_id", "rater_id", "rated_id", name="uq_rating_request_rater_rated"),
        db.Index("idx_ratings_rated_id", "rated_id"),
        db.Index("idx_ratings_created_at", "created_at"),
    )

    id = db.Column(
        db.String(50),
        primary_key=True,
        default=lambda: gen_uuid("rat")
    )

    help_request_id = db.Column(
        db.String(50),
        db.ForeignKey("help_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    rater_id = db.Column(
        db.String(50),
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )

    rated_id = db.Column(
        db.String(50),
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False
    )

    rating = db.Column(db.Integer, nullable=False)
    review = db.Column(db.String(500), nullable=True)
    categories = db.Column(db.JSON, default=list)

    is_anonymous = db.Column(db.Boolean, default=False, nullable=False)
    is_flagged = db.Column(db.Boolean, default=False, nullable=False)
    flag_reason = db.Column(db.String(500))

    created_at = db.Column(
        db.DateTime,
        server_default=func.now(),
        nullable=False
    )

    # Relationships
    help_request = db.relationship(
        "HelpRequest",
        backref=db.backref("ratings", lazy=True, cascade="all, delete-orphan")
    )

    rater = db.relationship(
        "User",
        foreign_keys=[rater_id]
    )

    rated = db.relationship(
        "User",
        foreign_keys=[rated_id]
    )

    def public_data(self):
        return {
            "id": self.id,
            "rating": self.rating,
            "review": self.review,
            "categories": self.categories or [],
            "is_anonymous": self.is_anonymous,
            "rater": None if self.is_anonymous or not self.rater else self.rater.summary(),
            "help_request": {
                "id": self.help_request.id,
                "title": self.help_request.title,
                "category": self.help_request.category,
            } if self.help_request else None,
            "created_at": self.created_at.isoformat() + "Z" if self.created_at else None,
        }

    def to_dict(self):
        data = self.public_data()
        data.update({
            "rated": self.rated.summary() if self.rated else None,
            "is_flagged": self.is_flagged,
            "flag_reason": self.flag_reason,
        })
        return data
