from helphub.extensions import db
from datetime import datetime
import uuid

MESSAGE_TYPES = ("text", "image", "document", "location")


def gen_msg_id():
    return f"msg-{str(uuid.uuid4())[:8]}"


class Message(db.Model):
    __tablename__ = "messages"

    __table_args__ = (
        db.UniqueConstraint("chat_id", "seq", name="uq_message_chat_seq"),
        db.Index("idx_messages_chat_seq", "chat_id", "seq"),
    )

    id = db.Column(db.String(50), primary_key=True, default=gen_msg_id)
    chat_id = db.Column(db.String(50), db.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    seq = db.Column(db.Integer, nullable=False)
    sender_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False)

    content = db.Column(db.Text, nullable=False)
    message_type = db.Column(db.String(20), default="text", nullable=False)
    attachments = db.Column(db.JSON, default=list)
    location = db.Column(db.JSON, nullable=True)
    reply_to_id = db.Column(db.String(50), db.ForeignKey("messages.id"), nullable=True)

    is_read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime)
    is_edited = db.Column(db.Boolean, default=False, nullable=False)
    edited_at = db.Column(db.DateTime)
    is_deleted = db.Column(db.Boolean, default=False, nullable=False)
    deleted_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    sender = db.relationship("User", lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "seq": self.seq,
            "sender": self.sender.summary() if self.sender else {"id": self.sender_id},
            "content": self.content,
            "message_type": self.message_type,
            "attachments": self.attachments or [],
            "location": self.location,
            "reply_to": self.reply_to_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() + "Z" if self.read_at else None,
            "is_edited": self.is_edited,
            "edited_at": self.edited_at.isoformat() + "Z" if self.edited_at else None,
            "sent_at": self.created_at.isoformat() + "Z" if self.created_at else None,
        }
