"""
Accounts and bearer-token authentication.

Session tokens are HS256 JWTs signed with the app's SECRET_KEY and sent as
``Authorization: Bearer <token>``.
"""
import re
import functools
from datetime import datetime, timedelta

import jwt
from flask import request, g, current_app
from werkzeug.security import generate_password_hash, check_password_hash

from ..errors import Unauthorized, Forbidden, NotFoundError, ValidationError
from ..models import db, User, Team, TeamMember, ROLE_ADMIN

# 7-19 letters/digits with at least one lower-case, one upper-case and one digit
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)[A-Za-z0-9]{7,19}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

PASSWORD_RULES = (
    "Password must be 7-19 characters long, only letters and numbers, "
    "with at least one capital letter, one lowercase letter and one number"
)


def normalize_email(email):
    if not isinstance(email, str):
        raise ValidationError("A valid email address is required")
    email = email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("A valid email address is required")
    return email


def validate_password(password):
    if not isinstance(password, str) or not PASSWORD_PATTERN.match(password):
        raise ValidationError(PASSWORD_RULES)
    return password


def hash_password(password):
    return generate_password_hash(password)


def verify_password(user, password):
    return user is not None and isinstance(password, str) and check_password_hash(user.password, password)


def issue_token(user):
    ttl = current_app.config.get("TOKEN_TTL_MINUTES", 60)
    payload = {
        "sub": str(user.id),
        "username": user.username,
        "iat": datetime.utcnow(),
        "exp": datetime.utcnow() + timedelta(minutes=ttl),
    }
    return jwt.encode(payload, current_app.config["SECRET_KEY"], algorithm="HS256")


def validate_token(token):
    """
    Decode a session token and return its payload, or None when the token
    is malformed, tampered with or expired.
    """
    try:
        return jwt.decode(token, current_app.config["SECRET_KEY"], algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def get_current_user():
    return getattr(g, "user", None)


def authed_only(f):
    """Require a valid bearer token; the user is available as ``g.user``."""
    @functools.wraps(f)
    def authed_only_wrapper(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            raise Unauthorized("Authentication required")

        payload = validate_token(auth_header[7:])
        if payload is None:
            raise Unauthorized("Invalid or expired token")

        try:
            user = db.session.get(User, int(payload.get("sub")))
        except (TypeError, ValueError):
            user = None
        if user is None:
            raise Unauthorized("Invalid or expired token")

        g.user = user
        return f(*args, **kwargs)

    return authed_only_wrapper


def get_team(team_id):
    team = db.session.get(Team, team_id)
    if team is None:
        raise NotFoundError("Team not found")
    return team


def get_membership(team_id, user):
    return TeamMember.query.filter_by(team_id=team_id, user_id=user.id).first()


def require_member(team_id, user):
    get_team(team_id)
    membership = get_membership(team_id, user)
    if membership is None:
        raise Forbidden("You are not a member of this team")
    return membership


def require_admin(team_id, user):
    membership = require_member(team_id, user)
    if membership.role != ROLE_ADMIN:
        raise Forbidden("Only team admins can do this")
    return membership
