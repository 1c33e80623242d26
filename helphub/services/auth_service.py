from datetime import timedelta, datetime

from flask import current_app
from flask_jwt_extended import create_access_token

from helphub.extensions import db
from helphub.models.user import User
from helphub.utils.auth_utils import hash_password, check_password
from helphub.utils.exceptions import ServiceError


def register_user(email, password, name, role="needy", phone=None, address=None):
    email = email.strip().lower()
    if User.query.filter_by(email=email).first():
        raise ServiceError(
            code="USER_EXISTS",
            message="User with that email already exists",
            details={"field": "email"},
            status=409,
        )

    user = User(
        email=email,
        password_hash=hash_password(password),
        name=name,
        role=role,
        phone=phone,
        address=address,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate_user(email, password):
    user = User.query.filter_by(email=email.strip().lower()).first()
    if not user or not check_password(password, user.password_hash):
        raise ServiceError(code="AUTH_FAILED", message="Invalid credentials", status=401)
    if user.is_blocked:
        raise ServiceError(code="ACCOUNT_BLOCKED", message="Account is blocked", status=403)

    user.last_active = datetime.utcnow()
    db.session.commit()
    return user


def generate_token_for_user(user):
    return create_access_token(
        identity=user.id,
        additional_claims={"role": user.role},
        expires_delta=timedelta(seconds=current_app.config.get("ACCESS_EXPIRES", 86400)),
    )
