from helphub.extensions import db
from datetime import datetime
import uuid

APPLICATION_PENDING = "Pending"
APPLICATION_ACCEPTED = "Accepted"
APPLICATION_REJECTED = "Rejected"


def gen_application_id():
    return f"APP-{str(uuid.uuid4())[:8]}"


class RequestApplication(db.Model):
    __tablename__ = "request_applications"

    __table_args__ = (
        db.UniqueConstraint("help_request_id", "volunteer_id", name="uq_application_request_volunteer"),
    )

    id = db.Column(db.String(50), primary_key=True, default=gen_application_id)
    help_request_id = db.Column(
        db.String(50),
        db.ForeignKey("help_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    volunteer_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False, index=True)

    message = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(20), default=APPLICATION_PENDING, nullable=False)
    applied_at = db.Column(db.DateTime, default=datetime.utcnow)

    volunteer = db.relationship("User", backref=db.backref("applications", lazy=True))

    def to_dict(self):
        return {
            "id": self.id,
            "help_request_id": self.help_request_id,
            "volunteer": self.volunteer.summary() if self.volunteer else None,
            "message": self.message,
            "status": self.status,
            "applied_at": self.applied_at.isoformat() + "Z" if self.applied_at else None,
        }
