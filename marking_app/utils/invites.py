"""
Team invitations: pending -> accepted | denied.
"""
import secrets
import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import Conflict, Expired, Forbidden, NotFoundError, ValidationError, text_value
from ..models import (
    db, User, TeamInvite, TeamMember, ROLE_TUTOR,
    INVITE_PENDING, INVITE_ACCEPTED, INVITE_DENIED,
)
from .auth import normalize_email, require_admin
from .email import sendmail

logger = logging.getLogger(__name__)

ACTIONS = {
    "accept": INVITE_ACCEPTED,
    "deny": INVITE_DENIED,
    "decline": INVITE_DENIED,
}


def _is_member(team_id, email):
    user = User.query.filter(db.func.lower(User.username) == email).first()
    if user is None:
        return False
    return TeamMember.query.filter_by(team_id=team_id, user_id=user.id).first() is not None


def _pending_invite(team_id, email):
    now = datetime.utcnow()
    for invite in TeamInvite.query.filter_by(team_id=team_id, status=INVITE_PENDING).all():
        if invite.invitee_email.lower() == email and not invite.is_expired(now):
            return invite
    return None


def create_invite(team_id, inviter_id, email):
    """
    Create a pending invite for ``email``. Only team admins may invite.

    Raises:
        Conflict: the address is already a member or already invited
    """
    inviter = db.session.get(User, inviter_id)
    if inviter is None:
        raise NotFoundError("Inviter not found")
    require_admin(team_id, inviter)

    email = normalize_email(email)
    if _is_member(team_id, email):
        raise Conflict(f"{email} is already a member of this team")
    if _pending_invite(team_id, email) is not None:
        raise Conflict(f"{email} already has a pending invite")

    ttl_days = current_app.config.get("INVITE_TTL_DAYS", 7)
    invite = TeamInvite(
        team_id=team_id,
        inviter_id=inviter_id,
        invitee_email=email,
        status=INVITE_PENDING,
        token=secrets.token_urlsafe(32),
        expires_at=datetime.utcnow() + timedelta(days=ttl_days),
    )
    db.session.add(invite)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict(f"Could not create an invite for {email}")

    logger.info("Invite %s created for %s to team %s", invite.id, email, team_id)
    return invite


def invite_url(invite):
    base = (current_app.config.get("APP_URL") or "").rstrip("/")
    return f"{base}/join-team/{invite.token}"


def send_invite_email(invite):
    """
    Deliver the invite link. The invite itself is already committed, so a
    failure here is reported to the caller rather than undone.

    Returns:
        tuple: (success: bool, message: str)
    """
    team_name = invite.team.name if invite.team else "a team"
    inviter = invite.inviter.username if invite.inviter else "A team admin"
    subject = f"You're invited to join {team_name}"
    text = f"""Hello,

{inviter} has invited you to mark for {team_name}.

Accept or decline the invitation here:
{invite_url(invite)}

This link expires on {invite.expires_at.strftime("%Y-%m-%d %H:%M") if invite.expires_at else "never"} (UTC).
"""
    success, message = sendmail(invite.invitee_email, text, subject)
    if not success:
        logger.warning("Invite %s e-mail to %s failed: %s", invite.id, invite.invitee_email, message)
    return success, message


def get_invite(token):
    invite = TeamInvite.query.filter_by(token=token).first() if token else None
    if invite is None:
        raise NotFoundError("Invite not found")
    return invite


def respond(token, user_id, action):
    """
    Accept or deny an invite on behalf of ``user_id``.

    Accepting adds a ``tutor`` membership in the same transaction as the
    status change. A resolved or expired invite cannot be answered again.
    """
    invite = get_invite(token)
    if not invite.is_pending:
        raise Expired(f"This invite has already been {invite.status}")
    if invite.is_expired():
        raise Expired("This invite has expired")

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.username.lower() != invite.invitee_email.lower():
        raise Forbidden("This invite was sent to a different email address")

    status = ACTIONS.get(text_value(action, "action").lower())
    if status is None:
        raise ValidationError("action must be 'accept' or 'deny'")

    membership = None
    try:
        if status == INVITE_ACCEPTED:
            if TeamMember.query.filter_by(team_id=invite.team_id, user_id=user.id).first():
                raise Conflict("You are already a member of this team")
            membership = TeamMember(team_id=invite.team_id, user_id=user.id, role=ROLE_TUTOR)
            db.session.add(membership)
        invite.status = status
        invite.responded_at = datetime.utcnow()
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("You are already a member of this team")
    except Exception:
        db.session.rollback()
        raise

    logger.info("Invite %s %s by user %s", invite.id, status, user.id)
    team_name = invite.team.name if invite.team else "the team"
    if membership is not None:
        message = f"You have joined {team_name}"
    else:
        message = f"You have declined the invite to {team_name}"
    return {
        "message": message,
        "status": status,
        "teamId": invite.team_id,
        "membership": membership.to_dict() if membership is not None else None,
    }
