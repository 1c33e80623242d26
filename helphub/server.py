import logging
import os

from helphub.extensions import socketio
from helphub.main import create_app
from helphub.services.realtime import get_fanout

logger = logging.getLogger(__name__)


def main():
    app = create_app()
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 5000))
    logger.info("Starting HelpHub on %s:%s", host, port)
    try:
        socketio.run(app, host=host, port=port, allow_unsafe_werkzeug=app.config.get("DEBUG", False))
    finally:
        with app.app_context():
            get_fanout().close()


if __name__ == "__main__":
    main()
