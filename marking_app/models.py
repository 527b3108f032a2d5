from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import (
    Column, Integer, String, Text, Float, ForeignKey, DateTime, UniqueConstraint,
    CheckConstraint, Boolean, Table,
)
from sqlalchemy.orm import relationship
from datetime import datetime


db = SQLAlchemy()

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROLE_ADMIN = "admin"
ROLE_TUTOR = "tutor"
ROLES = (ROLE_ADMIN, ROLE_TUTOR)

INVITE_PENDING = "pending"
INVITE_ACCEPTED = "accepted"
INVITE_DENIED = "denied"


def _fmt(value):
    return value.strftime(DATE_FORMAT) if value else None


# Markers selected for an assignment (many-to-many users <-> assignments)
assignment_markers = Table(
    "assignment_markers",
    db.Model.metadata,
    Column("assignment_id", Integer, ForeignKey("assignments.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("assigned_at", DateTime, nullable=True, default=datetime.utcnow)
)


class User(db.Model):
    """
    A login identity. ``username`` is the e-mail address the account was
    verified with.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(255), unique=True, nullable=False)
    password = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=True, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, default=datetime.utcnow, onupdate=datetime.utcnow)

    memberships = relationship("TeamMember", back_populates="user", lazy="select")

    @property
    def email(self):
        return self.username

    def __repr__(self):
        return f"<User {self.id} - {self.username}>"

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "createdAt": _fmt(self.created_at),
        }


class Team(db.Model):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), unique=True, nullable=False)
    profile_picture = Column(Text, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=True, default=datetime.utcnow)

    owner = relationship("User", foreign_keys=[owner_id], lazy="joined")
    members = relationship(
        "TeamMember", back_populates="team", cascade="all, delete-orphan", lazy="select"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "profilePicture": self.profile_picture,
            "ownerId": self.owner_id,
            "ownerName": self.owner.username if self.owner else None,
            "createdAt": _fmt(self.created_at),
        }


class TeamMember(db.Model):
    """
    A user's single role within a team.
    """
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),)

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), nullable=False, default=ROLE_TUTOR)
    joined_at = Column(DateTime, nullable=True, default=datetime.utcnow)

    team = relationship("Team", back_populates="members")
    user = relationship("User", back_populates="memberships", lazy="joined")

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    def to_dict(self):
        return {
            "id": self.user_id,
            "membershipId": self.id,
            "teamId": self.team_id,
            "username": self.user.username if self.user else None,
            "role": self.role,
            "joinedAt": _fmt(self.joined_at),
        }


class TeamInvite(db.Model):
    """
    Invitation to join a team. The token is the only capability needed to
    view and answer it; the answer must come from the invited address.
    """
    __tablename__ = "team_invites"

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    inviter_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    invitee_email = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=INVITE_PENDING)
    token = Column(String(128), unique=True, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True)
    responded_at = Column(DateTime, nullable=True)

    team = relationship("Team", foreign_keys=[team_id], lazy="joined")
    inviter = relationship("User", foreign_keys=[inviter_id], lazy="select")

    @property
    def is_pending(self):
        return self.status == INVITE_PENDING

    def is_expired(self, now=None):
        now = now or datetime.utcnow()
        return self.expires_at is not None and self.expires_at < now

    def to_dict(self):
        return {
            "id": self.id,
            "teamId": self.team_id,
            "teamName": self.team.name if self.team else None,
            "inviterName": self.inviter.username if self.inviter else None,
            "inviteeEmail": self.invitee_email,
            "status": self.status,
            "createdAt": _fmt(self.created_at),
            "expiresAt": _fmt(self.expires_at),
        }

    def __repr__(self):
        return f"<TeamInvite {self.id} - Team {self.team_id} {self.invitee_email} ({self.status})>"


class Assignment(db.Model):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    course_code = Column(String(50), nullable=True)
    course_name = Column(String(255), nullable=True)
    semester = Column(String(20), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    standard_marker_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=True)
    due_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=True, default=datetime.utcnow)

    creator = relationship("User", foreign_keys=[created_by], lazy="joined")
    standard_marker = relationship("User", foreign_keys=[standard_marker_id], lazy="joined")
    team = relationship("Team", foreign_keys=[team_id], lazy="select")
    criteria = relationship(
        "RubricCriterion",
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="RubricCriterion.position",
    )
    submissions = relationship(
        "Submission",
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="Submission.id",
    )
    markers = relationship("User", secondary=assignment_markers, lazy="select", order_by="User.username")

    @property
    def standard_id(self):
        return self.standard_marker_id or self.created_by

    @property
    def total_points(self):
        return sum(c.max_marks for c in self.criteria)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "courseCode": self.course_code,
            "courseName": self.course_name,
            "semester": self.semester,
            "teamId": self.team_id,
            "createdBy": self.created_by,
            "standardMarkerId": self.standard_id,
            "standardMarkerName": (self.standard_marker or self.creator).username if (self.standard_marker or self.creator) else None,
            "dueDate": _fmt(self.due_date),
            "createdAt": _fmt(self.created_at),
        }


class RubricCriterion(db.Model):
    """
    One rubric section. ``deviation_threshold`` is a percentage of
    ``max_marks``; tiers are derived from ``max_marks``.
    """
    __tablename__ = "rubrics"
    __table_args__ = (CheckConstraint("max_marks > 0", name="ck_rubrics_max_marks_positive"),)

    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False)
    section_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    max_marks = Column(Integer, nullable=False)
    deviation_threshold = Column(Float, nullable=False, default=0)
    admin_comment = Column(Text, nullable=True)
    position = Column(Integer, nullable=False, default=0)

    assignment = relationship("Assignment", back_populates="criteria")
    tiers = relationship(
        "RubricTier",
        back_populates="criterion",
        cascade="all, delete-orphan",
        order_by="RubricTier.position",
    )

    @property
    def absolute_threshold(self):
        return (self.deviation_threshold or 0) / 100.0 * self.max_marks

    def to_dict(self):
        return {
            "id": self.id,
            "assignmentId": self.assignment_id,
            "categoryName": self.section_name,
            "description": self.description,
            "maxScore": self.max_marks,
            "deviationScore": self.deviation_threshold,
            "adminComments": self.admin_comment,
            "tiers": [tier.to_dict() for tier in self.tiers],
        }


class RubricTier(db.Model):
    __tablename__ = "rubric_tiers"

    id = Column(Integer, primary_key=True)
    rubric_id = Column(Integer, ForeignKey("rubrics.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    lower_bound = Column(Float, nullable=False)
    upper_bound = Column(Float, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    criterion = relationship("RubricCriterion", back_populates="tiers")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "lowerBound": self.lower_bound,
            "upperBound": self.upper_bound,
        }


class Submission(db.Model):
    """
    A control paper: the reference submission every marker scores.
    """
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False)
    student_identifier = Column(String(255), nullable=False)
    file_path = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=True, default=datetime.utcnow)

    assignment = relationship("Assignment", back_populates="submissions")
    marks = relationship("Mark", back_populates="submission", cascade="all, delete-orphan")
    control_marks = relationship("ControlMark", back_populates="submission", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Submission {self.id} - Assignment {self.assignment_id}>"

    def to_dict(self):
        return {
            "id": self.id,
            "assignmentId": self.assignment_id,
            "name": self.student_identifier,
            "filePath": self.file_path,
            "createdAt": _fmt(self.created_at),
        }


class Mark(db.Model):
    """
    One marker's score for one criterion of one control paper.
    """
    __tablename__ = "marks"
    __table_args__ = (
        UniqueConstraint("submission_id", "rubric_id", "tutor_id", name="uq_marks_submission_rubric_tutor"),
    )

    id = Column(Integer, primary_key=True)
    submission_id = Column(Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False)
    rubric_id = Column(Integer, ForeignKey("rubrics.id", ondelete="CASCADE"), nullable=False)
    tutor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    marks_awarded = Column(Integer, nullable=False)
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=True, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, default=datetime.utcnow)

    submission = relationship("Submission", back_populates="marks")
    criterion = relationship("RubricCriterion", foreign_keys=[rubric_id], lazy="select")
    marker = relationship("User", foreign_keys=[tutor_id], lazy="joined")

    def __repr__(self):
        return f"<Mark {self.id} - Submission {self.submission_id} Rubric {self.rubric_id} Tutor {self.tutor_id}>"

    def to_dict(self):
        return {
            "id": self.id,
            "submissionId": self.submission_id,
            "rubricCategoryId": self.rubric_id,
            "markerId": self.tutor_id,
            "markerName": self.marker.username if self.marker else None,
            "score": self.marks_awarded,
            "comment": self.comments,
            "createdAt": _fmt(self.created_at),
            "updatedAt": _fmt(self.updated_at),
        }


class ControlMark(db.Model):
    """
    Official score for a control paper criterion, kept apart from tutor marks.
    """
    __tablename__ = "control_marks"
    __table_args__ = (UniqueConstraint("submission_id", "rubric_id", name="uq_control_marks_submission_rubric"),)

    id = Column(Integer, primary_key=True)
    submission_id = Column(Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False)
    rubric_id = Column(Integer, ForeignKey("rubrics.id", ondelete="CASCADE"), nullable=False)
    official_marks = Column(Integer, nullable=False)
    comments = Column(Text, nullable=True)

    submission = relationship("Submission", back_populates="control_marks")

    def to_dict(self):
        return {
            "id": self.id,
            "submissionId": self.submission_id,
            "rubricCategoryId": self.rubric_id,
            "score": self.official_marks,
            "comment": self.comments,
        }


class VerificationCode(db.Model):
    """
    Short-lived e-mail verification codes for signup and password reset.
    Only an HMAC of the code is stored; each code is single-use.
    """
    __tablename__ = "verification_codes"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False, index=True)
    purpose = Column(String(20), nullable=False, default="signup")
    code_hash = Column(String(256), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False)
    used_at = Column(DateTime, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<VerificationCode {self.id} - {self.email} ({self.purpose})>"
