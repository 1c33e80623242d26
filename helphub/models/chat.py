from helphub.extensions import db
from datetime import datetime
import uuid


def gen_chat_id():
    return f"chat-{str(uuid.uuid4())[:8]}"


class Chat(db.Model):
    """The message thread bound to exactly one help request."""

    __tablename__ = "chats"

    id = db.Column(db.String(50), primary_key=True, default=gen_chat_id)

    # one thread per request
    help_request_id = db.Column(
        db.String(50),
        db.ForeignKey("help_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    # sequence counter for the append-only message log
    message_count = db.Column(db.Integer, default=0, nullable=False)
    last_activity = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    help_request = db.relationship(
        "HelpRequest",
        backref=db.backref("chat", uselist=False, cascade="all, delete-orphan"),
        lazy=True,
    )
    participants = db.relationship(
        "ChatParticipant",
        backref="chat",
        lazy=True,
        cascade="all, delete-orphan",
    )

    @property
    def participant_ids(self):
        return {p.user_id for p in self.participants}

    def participant(self, user_id):
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None

    def other_participant(self, user_id):
        for p in self.participants:
            if p.user_id != user_id:
                return p
        return None


class ChatParticipant(db.Model):
    """Per-participant state of a thread: unread counter and typing presence."""

    __tablename__ = "chat_participants"

    chat_id = db.Column(db.String(50), db.ForeignKey("chats.id", ondelete="CASCADE"), primary_key=True)
    user_id = db.Column(db.String(50), db.ForeignKey("users.id"), primary_key=True, index=True)
    role_in_chat = db.Column(db.String(20), nullable=False)

    unread_count = db.Column(db.Integer, default=0, nullable=False)
    is_typing = db.Column(db.Boolean, default=False, nullable=False)
    typing_updated_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship("User", lazy=True)

    def typing_active(self, timeout_seconds, now=None):
        if not self.is_typing or self.typing_updated_at is None:
            return False
        now = now or datetime.utcnow()
        return (now - self.typing_updated_at).total_seconds() < timeout_seconds
