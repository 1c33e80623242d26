import logging
import os

from flask import Flask
from flask_cors import CORS
from marshmallow import ValidationError as SchemaValidationError

from helphub.config import CONFIGS
from helphub.extensions import db, migrate, jwt, ma, limiter, bcrypt, socketio
from helphub.services.realtime import RealtimeFanout
from helphub.utils.exceptions import ServiceError
from helphub.utils.response_formatter import success_response, error_response


def configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("helphub").setLevel(level)
    app.logger.setLevel(level)


def create_app(config_name=None):
    app = Flask(__name__, instance_relative_config=False)
    env = config_name or os.getenv("FLASK_ENV", "development")
    app.config.from_object(CONFIGS.get(env, CONFIGS["development"]))

    configure_logging(app)

    # models must be imported before the mappers are used
    from helphub.models import user, badge, help_request, application, chat, message, rating  # noqa: F401

    # initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    ma.init_app(app)
    limiter.init_app(app)
    bcrypt.init_app(app)
    origins = [o.strip() for o in app.config["CORS_ORIGINS"].split(",")]
    CORS(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    )

    # socket handlers register on import
    from helphub import sockets  # noqa: F401

    socketio.init_app(
        app,
        cors_allowed_origins=origins,
        async_mode=app.config["SOCKETIO_ASYNC_MODE"],
    )
    fanout = RealtimeFanout()
    fanout.init_app(app, socketio)

    # register blueprints
    from helphub.routes.auth_routes import bp as auth_bp
    from helphub.routes.request_routes import bp as request_bp
    from helphub.routes.chat_routes import bp as chat_bp
    from helphub.routes.admin_routes import bp as admin_bp
    from helphub.routes.user_routes import bp as user_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(request_bp)
    app.register_blueprint(chat_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(user_bp)

    @app.route("/api/health", methods=["GET"])
    def health():
        return success_response({"status": "ok"})

    # jwt failures share the error envelope
    @jwt.unauthorized_loader
    def missing_token(reason):
        return error_response("UNAUTHORIZED", reason, status=401)

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return error_response("UNAUTHORIZED", reason, status=401)

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return error_response("TOKEN_EXPIRED", "Token has expired", status=401)

    # error handlers to match required error format
    @app.errorhandler(ServiceError)
    def service_error(e):
        db.session.rollback()
        return error_response(e.code, e.message, e.details, status=e.status)

    @app.errorhandler(SchemaValidationError)
    def schema_error(e):
        return error_response("VALIDATION_ERROR", "Validation failed", e.messages, status=400)

    @app.errorhandler(400)
    def bad_request(e):
        return error_response("BAD_REQUEST", str(e), status=400)

    @app.errorhandler(401)
    def unauthorized(e):
        return error_response("UNAUTHORIZED", str(e), status=401)

    @app.errorhandler(404)
    def not_found(e):
        return error_response("NOT_FOUND", "Resource not found", status=404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return error_response("METHOD_NOT_ALLOWED", str(e), status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return error_response("RATE_LIMITED", "Too many requests, please try again later", status=429)

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        app.logger.error("Unhandled error: %s", getattr(e, "original_exception", e))
        return error_response("SERVER_ERROR", "Internal server error", status=500)

    return app
