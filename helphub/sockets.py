"""
Socket.IO handlers. A client authenticates on connect with
``auth={"token": <access token>}`` and is placed in the room named after its
user id; every server-side event for that user is emitted to that room.
"""
import logging

from flask import request
from flask_jwt_extended import decode_token
from flask_socketio import ConnectionRefusedError, emit, join_room

from helphub.extensions import db, socketio
from helphub.models.user import User
from helphub.services import chat_service
from helphub.services.realtime import get_fanout
from helphub.utils.exceptions import ServiceError

logger = logging.getLogger(__name__)


def _token_from(auth):
    if isinstance(auth, dict) and auth.get("token"):
        return auth["token"]
    return request.args.get("token")


@socketio.on("connect")
def on_connect(auth=None):
    token = _token_from(auth)
    if not token:
        raise ConnectionRefusedError("unauthorized")

    try:
        claims = decode_token(token)
    except Exception:
        logger.info("Socket connection refused: invalid token")
        raise ConnectionRefusedError("unauthorized")

    user = db.session.get(User, claims["sub"])
    if user is None or user.is_blocked:
        raise ConnectionRefusedError("unauthorized")

    join_room(user.id)
    get_fanout().register(user.id, request.sid)
    logger.debug("User %s connected (sid %s)", user.id, request.sid)


@socketio.on("disconnect")
def on_disconnect(reason=None):
    user_id = get_fanout().unregister(request.sid)
    logger.debug("User %s disconnected (sid %s)", user_id, request.sid)


@socketio.on("typing")
def on_typing(data):
    user_id = get_fanout().user_for_sid(request.sid)
    if user_id is None:
        return

    if data is None:
        data = {}
    if not isinstance(data, dict):
        emit("error", {"code": "VALIDATION_ERROR", "message": "Typing payload must be an object"})
        return

    try:
        chat_service.set_typing(data.get("chatId"), user_id, bool(data.get("isTyping")))
    except ServiceError as e:
        db.session.rollback()
        emit("error", {"code": e.code, "message": e.message})
