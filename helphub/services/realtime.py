"""
Real-time fan-out of chat and lifecycle events to connected participants.

Each connected user joins a Socket.IO room named after their user id. The
fan-out only delivers to those rooms; it keeps no message history, so a client
that reconnects fetches the authoritative log through the chat endpoints.
"""
import logging
import threading
from collections import defaultdict

from flask import current_app

from helphub.utils.response_formatter import isoformat

logger = logging.getLogger(__name__)

EXTENSION_KEY = "realtime_fanout"


class RealtimeFanout:
    def __init__(self, socketio=None):
        self.socketio = socketio
        self._sessions = defaultdict(set)
        self._sid_to_user = {}
        self._lock = threading.Lock()
        self.closed = False

    def init_app(self, app, socketio=None):
        if socketio is not None:
            self.socketio = socketio
        app.extensions[EXTENSION_KEY] = self

    def close(self):
        with self._lock:
            self._sessions.clear()
            self._sid_to_user.clear()
        self.closed = True
        logger.info("Realtime fan-out closed")

    # -----------------------------------------------------------
    # connection registry
    # -----------------------------------------------------------
    def register(self, user_id, sid):
        with self._lock:
            self._sessions[user_id].add(sid)
            self._sid_to_user[sid] = user_id

    def unregister(self, sid):
        with self._lock:
            user_id = self._sid_to_user.pop(sid, None)
            if user_id is not None:
                self._sessions[user_id].discard(sid)
                if not self._sessions[user_id]:
                    del self._sessions[user_id]
        return user_id

    def user_for_sid(self, sid):
        with self._lock:
            return self._sid_to_user.get(sid)

    def is_online(self, user_id):
        with self._lock:
            return bool(self._sessions.get(user_id))

    # -----------------------------------------------------------
    # delivery
    # -----------------------------------------------------------
    def publish(self, user_id, event, payload):
        """Emit ``event`` to the user's room. Failures are logged, never raised."""
        if self.closed or self.socketio is None:
            logger.debug("Fan-out unavailable, dropping %s for %s", event, user_id)
            return False
        try:
            self.socketio.emit(event, payload, to=str(user_id))
            return True
        except Exception:
            logger.exception("Failed to deliver %s to %s", event, user_id)
            return False

    def message_created(self, chat, message_data, sender_id):
        payload = {"chatId": chat.id, "message": message_data}
        for user_id in chat.participant_ids:
            if user_id != sender_id:
                self.publish(user_id, "receive_message", payload)

    def typing_changed(self, chat, user_id, is_typing):
        payload = {"chatId": chat.id, "userId": user_id, "isTyping": is_typing}
        for other_id in chat.participant_ids:
            if other_id != user_id:
                self.publish(other_id, "user_typing", payload)

    def request_status_changed(self, help_request):
        payload = {
            "requestId": help_request.id,
            "status": help_request.status,
            "volunteerId": help_request.volunteer_id,
            "chatId": help_request.chat_id,
            "updatedAt": isoformat(help_request.updated_at),
        }
        self.publish(help_request.needy_user_id, "request_status_changed", payload)


def get_fanout():
    return current_app.extensions[EXTENSION_KEY]
