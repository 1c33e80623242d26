from flask import Blueprint, request, g, current_app

from helphub.schemas.chat_schema import MessageSchema, MessageEditSchema, TypingSchema
from helphub.services import chat_service
from helphub.utils.pagination import parse_page_args
from helphub.utils.permissions import requires
from helphub.utils.response_formatter import success_response

bp = Blueprint("chat", __name__, url_prefix="/api/v1/chat")


# -----------------------------------------------------------
# LIST CHATS
# -----------------------------------------------------------
@bp.route("", methods=["GET"])
@requires("chat.use")
def list_chats():
    uid = g.current_user.id
    chats = chat_service.list_chats(uid)
    return success_response({"chats": [chat_service.serialize_chat(c, uid) for c in chats]})


# -----------------------------------------------------------
# OPEN CHAT (marks incoming messages read)
# -----------------------------------------------------------
@bp.route("/<chat_id>", methods=["GET"])
@requires("chat.use")
def get_chat(chat_id):
    uid = g.current_user.id
    page, limit = parse_page_args(
        request.args,
        default_limit=current_app.config["DEFAULT_MESSAGE_PAGE_SIZE"],
    )

    chat_service.mark_read(chat_id, uid)
    chat, messages, pagination = chat_service.paginate(chat_id, uid, page, limit)

    return success_response({
        "chat": chat_service.serialize_chat(chat, uid),
        "messages": [m.to_dict() for m in messages],
        "pagination": pagination,
    })


# -----------------------------------------------------------
# MESSAGES
# -----------------------------------------------------------
@bp.route("/<chat_id>/messages", methods=["POST"])
@requires("chat.use")
def send_message(chat_id):
    data = MessageSchema().load(request.get_json(silent=True) or {})
    msg = chat_service.append_message(chat_id, g.current_user, data)
    return success_response({"message": msg.to_dict()}, status=201)


@bp.route("/<chat_id>/messages/<message_id>", methods=["PUT"])
@requires("chat.use")
def edit_message(chat_id, message_id):
    data = MessageEditSchema().load(request.get_json(silent=True) or {})
    msg = chat_service.edit_message(chat_id, message_id, g.current_user.id, data["content"])
    return success_response({"message": msg.to_dict()})


@bp.route("/<chat_id>/messages/<message_id>", methods=["DELETE"])
@requires("chat.use")
def delete_message(chat_id, message_id):
    chat_service.soft_delete_message(chat_id, message_id, g.current_user.id)
    return success_response(message="Message deleted successfully")


# -----------------------------------------------------------
# READ / TYPING
# -----------------------------------------------------------
@bp.route("/<chat_id>/read", methods=["PUT"])
@requires("chat.use")
def mark_read(chat_id):
    updated = chat_service.mark_read(chat_id, g.current_user.id)
    return success_response({"marked": updated}, message="Messages marked as read")


@bp.route("/<chat_id>/typing", methods=["POST"])
@requires("chat.use")
def typing(chat_id):
    data = TypingSchema().load(request.get_json(silent=True) or {})
    chat_service.set_typing(chat_id, g.current_user.id, data["is_typing"])
    return success_response({"is_typing": data["is_typing"]})
