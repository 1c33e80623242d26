from helphub.extensions import db
from datetime import datetime

BADGES = ("Bronze", "Silver", "Gold", "Hero", "Verified")


class UserBadge(db.Model):
    """A badge granted to a user. Badges are never revoked."""

    __tablename__ = "user_badges"

    __table_args__ = (
        db.UniqueConstraint("user_id", "badge", name="uq_user_badge"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    user_id = db.Column(db.String(50), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    badge = db.Column(db.String(20), nullable=False)
    granted_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
