import logging
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from helphub.extensions import db
from helphub.models.chat import Chat, ChatParticipant
from helphub.models.message import Message
from helphub.models.user import User
from helphub.services import notification_service
from helphub.services.realtime import get_fanout
from helphub.utils.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from helphub.utils.response_formatter import isoformat

logger = logging.getLogger(__name__)


# -----------------------------------------------------------
# thread lookup / creation
# -----------------------------------------------------------
def find_or_create_chat(help_request_id, needy_user_id, volunteer_id):
    """
    Return the thread bound to ``help_request_id``, creating it for the given
    participant pair when missing. Runs inside the caller's transaction; the
    caller commits.
    """
    pair = {needy_user_id, volunteer_id}

    chat = Chat.query.filter_by(help_request_id=help_request_id).first()
    if chat:
        if chat.participant_ids != pair:
            raise ConflictError("CHAT_EXISTS", "A chat with different participants already exists for this request")
        return chat

    chat = Chat(help_request_id=help_request_id, last_activity=datetime.utcnow())
    chat.participants = [
        ChatParticipant(user_id=needy_user_id, role_in_chat="needy"),
        ChatParticipant(user_id=volunteer_id, role_in_chat="volunteer"),
    ]
    try:
        with db.session.begin_nested():
            db.session.add(chat)
    except IntegrityError:
        logger.info("Chat for request %s created concurrently, reusing it", help_request_id)
        chat = Chat.query.filter_by(help_request_id=help_request_id).first()
        if chat is None:
            raise ConflictError("CHAT_EXISTS", "Could not create a chat for this request")
        if chat.participant_ids != pair:
            raise ConflictError("CHAT_EXISTS", "A chat with different participants already exists for this request")
        return chat

    logger.info("Created chat %s for request %s", chat.id, help_request_id)
    return chat


def get_chat_for_member(chat_id, user_id):
    chat = db.session.get(Chat, chat_id)
    if not chat:
        raise NotFoundError("Chat not found")
    if user_id not in chat.participant_ids:
        raise ForbiddenError("You are not a participant in this chat")
    return chat


def _lock_chat(chat_id):
    # serialization point for everything that touches the log or the counters
    return (
        Chat.query.filter_by(id=chat_id)
        .with_for_update()
        .populate_existing()
        .one()
    )


def _get_message(chat, message_id):
    msg = (
        Message.query.filter_by(id=message_id, chat_id=chat.id)
        .populate_existing()
        .first()
    )
    if not msg:
        raise NotFoundError("Message not found")
    return msg


# -----------------------------------------------------------
# messages
# -----------------------------------------------------------
def append_message(chat_id, sender, data):
    chat = get_chat_for_member(chat_id, sender.id)
    if not chat.is_active:
        raise ConflictError("CHAT_INACTIVE", "Chat is not active")

    reply_to = data.get("reply_to")
    if reply_to and not Message.query.filter_by(id=reply_to, chat_id=chat.id).first():
        raise ValidationError(
            "Invalid reply message",
            {"replyTo": ["Must reference a message in this chat"]},
        )

    # claim the next sequence number; the UPDATE holds the thread row lock
    # until commit so concurrent appends are applied one after another
    Chat.query.filter_by(id=chat.id).update(
        {Chat.message_count: Chat.message_count + 1},
        synchronize_session=False,
    )
    seq, last_activity = (
        db.session.query(Chat.message_count, Chat.last_activity)
        .filter(Chat.id == chat.id)
        .one()
    )

    now = datetime.utcnow()
    sent_at = max(now, last_activity) if last_activity else now

    msg = Message(
        chat_id=chat.id,
        seq=seq,
        sender_id=sender.id,
        content=data["content"],
        message_type=data.get("message_type") or "text",
        attachments=data.get("attachments") or [],
        location=data.get("location"),
        reply_to_id=reply_to,
        created_at=sent_at,
    )
    db.session.add(msg)

    Chat.query.filter_by(id=chat.id).update({Chat.last_activity: sent_at}, synchronize_session=False)
    ChatParticipant.query.filter(
        ChatParticipant.chat_id == chat.id,
        ChatParticipant.user_id != sender.id,
    ).update(
        {ChatParticipant.unread_count: ChatParticipant.unread_count + 1},
        synchronize_session=False,
    )
    # sending a message ends the sender's typing state
    ChatParticipant.query.filter_by(chat_id=chat.id, user_id=sender.id).update(
        {ChatParticipant.is_typing: False, ChatParticipant.typing_updated_at: None},
        synchronize_session=False,
    )
    db.session.commit()

    logger.info("Message %s (seq %s) appended to chat %s by %s", msg.id, seq, chat.id, sender.id)

    message_data = msg.to_dict()
    _fan_out_message(chat, message_data, sender)
    return msg


def _fan_out_message(chat, message_data, sender):
    try:
        fanout = get_fanout()
        fanout.message_created(chat, message_data, sender.id)
    except Exception:
        logger.exception("Real-time delivery failed for chat %s", chat.id)
        return

    for user_id in chat.participant_ids:
        if user_id == sender.id or fanout.is_online(user_id):
            continue
        notification_service.notify_new_message(db.session.get(User, user_id), sender, chat)


def edit_message(chat_id, message_id, requester_id, content):
    chat = get_chat_for_member(chat_id, requester_id)
    msg = _get_message(chat, message_id)

    if msg.sender_id != requester_id:
        raise ForbiddenError("You can only edit your own messages")
    if msg.is_deleted:
        raise ConflictError("MESSAGE_DELETED", "Deleted messages cannot be edited")

    msg.content = content
    msg.is_edited = True
    msg.edited_at = datetime.utcnow()
    db.session.commit()
    return msg


def soft_delete_message(chat_id, message_id, requester_id):
    chat = get_chat_for_member(chat_id, requester_id)
    _lock_chat(chat.id)
    msg = _get_message(chat, message_id)

    if msg.sender_id != requester_id:
        raise ForbiddenError("Can only delete your own messages")
    if msg.is_deleted:
        return msg

    msg.is_deleted = True
    msg.deleted_at = datetime.utcnow()

    # an unread message no longer counts once it is hidden
    if not msg.is_read:
        ChatParticipant.query.filter(
            ChatParticipant.chat_id == chat.id,
            ChatParticipant.user_id != msg.sender_id,
            ChatParticipant.unread_count > 0,
        ).update(
            {ChatParticipant.unread_count: ChatParticipant.unread_count - 1},
            synchronize_session=False,
        )

    db.session.commit()
    logger.info("Message %s in chat %s deleted by %s", msg.id, chat.id, requester_id)
    return msg


def mark_read(chat_id, user_id):
    """Mark everything the other participant sent as read. Safe to repeat."""
    chat = get_chat_for_member(chat_id, user_id)
    _lock_chat(chat.id)

    updated = Message.query.filter(
        Message.chat_id == chat.id,
        Message.sender_id != user_id,
        Message.is_read == False,  # noqa: E712
    ).update(
        {Message.is_read: True, Message.read_at: datetime.utcnow()},
        synchronize_session=False,
    )
    ChatParticipant.query.filter_by(chat_id=chat.id, user_id=user_id).update(
        {ChatParticipant.unread_count: 0},
        synchronize_session=False,
    )
    db.session.commit()
    return updated


def paginate(chat_id, user_id, page=1, limit=50):
    """Newest page of visible messages, returned oldest first for display."""
    chat = get_chat_for_member(chat_id, user_id)
    page = max(int(page or 1), 1)
    limit = max(int(limit or 50), 1)

    visible = Message.query.filter(
        Message.chat_id == chat.id,
        Message.is_deleted == False,  # noqa: E712
    )
    total = visible.count()
    items = (
        visible.order_by(Message.seq.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    items.reverse()

    return chat, items, {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": (total + limit - 1) // limit,
        "has_more": page * limit < total,
    }


# -----------------------------------------------------------
# typing presence
# -----------------------------------------------------------
def set_typing(chat_id, user_id, is_typing):
    chat = get_chat_for_member(chat_id, user_id)
    participant = chat.participant(user_id)

    participant.is_typing = bool(is_typing)
    participant.typing_updated_at = datetime.utcnow() if is_typing else None
    db.session.commit()

    try:
        get_fanout().typing_changed(chat, user_id, bool(is_typing))
    except Exception:
        logger.exception("Typing broadcast failed for chat %s", chat.id)
    return participant


def typing_users(chat, now=None):
    timeout = current_app.config["TYPING_TIMEOUT_SECONDS"]
    return [p.user_id for p in chat.participants if p.typing_active(timeout, now=now)]


# -----------------------------------------------------------
# listing / serialization
# -----------------------------------------------------------
def list_chats(user_id):
    return (
        Chat.query.join(ChatParticipant, ChatParticipant.chat_id == Chat.id)
        .filter(ChatParticipant.user_id == user_id)
        .order_by(Chat.last_activity.desc())
        .all()
    )


def last_visible_message(chat):
    return (
        Message.query.filter(
            Message.chat_id == chat.id,
            Message.is_deleted == False,  # noqa: E712
        )
        .order_by(Message.seq.desc())
        .first()
    )


def serialize_chat(chat, viewer_id):
    me = chat.participant(viewer_id)
    other = chat.other_participant(viewer_id)
    last_msg = last_visible_message(chat)
    req = chat.help_request

    return {
        "id": chat.id,
        "help_request": {
            "id": req.id,
            "title": req.title,
            "category": req.category,
            "status": req.status,
        } if req else None,
        "other_user": other.user.summary() if other and other.user else None,
        "last_message": {
            "id": last_msg.id,
            "content": last_msg.content,
            "sender_id": last_msg.sender_id,
            "sent_at": isoformat(last_msg.created_at),
            "is_read": last_msg.is_read,
        } if last_msg else None,
        "unread_count": me.unread_count if me else 0,
        "typing_users": [uid for uid in typing_users(chat) if uid != viewer_id],
        "is_active": chat.is_active,
        "message_count": chat.message_count,
        "last_activity": isoformat(chat.last_activity),
        "created_at": isoformat(chat.created_at),
    }
