from datetime import datetime, timezone

from flask import Flask, jsonify, request, make_response
from flask_cors import CORS
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .config import config_from_env, validate_config
from .errors import (
    MarkingError, ValidationError, NotFoundError, Conflict, Expired, Forbidden, UpstreamError, text_value,
)
from .models import db, User, Team, TeamMember, Assignment, RubricCriterion, ROLE_ADMIN, ROLES
from .utils import invites
from .utils.auth import (
    authed_only, get_current_user, get_team, require_member, require_admin,
    normalize_email, validate_password, hash_password, verify_password, issue_token,
)
from .utils.codes import VerificationCodeStore, PURPOSE_SIGNUP, PURPOSE_RESET
from .utils.email import sendmail
from .utils.rubric import build_criteria, update_criterion, set_admin_comment
from .utils.marking import submit_marks, submit_control_mark, create_control_paper, markers_already_marked
from .utils.deviation import compare_submission
from .utils.report_generator import aggregate, assignment_status, marker_progress, chart_data, build_report_rows
from .utils.pdf_generator import generate_assignment_report_pdf

__version__ = "1.0.0"


def create_app(config=None):
    """
    Build the Flask app. Settings come from the environment, overridden by
    ``config``; missing required settings stop startup with RuntimeError.
    """
    app = Flask(__name__)
    settings = config_from_env()
    if config:
        settings.update(config)
    app.config.update(validate_config(settings))

    db.init_app(app)
    CORS(app)
    load(app)
    return app


def load(app):
    # Create tables if they don't exist
    with app.app_context():
        db.create_all()

    code_store = VerificationCodeStore()

    @app.errorhandler(MarkingError)
    def handle_marking_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{request.method} {request.path} failed: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(error):
        db.session.rollback()
        app.logger.error(f"Database error on {request.method} {request.path}: {error}")
        return jsonify({"message": "Internal server error"}), 500

    def _json():
        data = request.get_json(silent=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    def _int_or_none(value):
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def _parse_due_date(value):
        if value in (None, ""):
            return None
        try:
            due = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("Invalid date format. Use YYYY-MM-DD or YYYY-MM-DDTHH:MM")
        if due.tzinfo is not None:
            due = due.astimezone(timezone.utc).replace(tzinfo=None)
        return due

    def _get_assignment(team_id, assignment_id):
        assignment = db.session.get(Assignment, assignment_id)
        if assignment is None or assignment.team_id != team_id:
            raise NotFoundError("Assignment not found")
        return assignment

    def _get_criterion(assignment, criterion_id):
        criterion = db.session.get(RubricCriterion, criterion_id)
        if criterion is None or criterion.assignment_id != assignment.id:
            raise NotFoundError("Rubric criterion not found")
        return criterion

    def _assignment_summary(assignment):
        data = assignment.to_dict()
        data["status"] = assignment_status(assignment)
        data["markerCount"] = len(assignment.markers)
        data["markersAlreadyMarked"] = markers_already_marked(assignment)
        data["controlPaperCount"] = len(assignment.submissions)
        return data

    def _commit_or_rollback():
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    # API: Check whether an account exists for an e-mail
    @app.route("/check-user", methods=["POST"])
    def check_user():
        email = normalize_email(_json().get("email"))
        exists = User.query.filter(db.func.lower(User.username) == email).first() is not None
        return jsonify({"exists": exists})

    # API: Send a verification code (signup, or password reset)
    @app.route("/send-code", methods=["POST"])
    def send_code():
        data = _json()
        email = normalize_email(data.get("email"))
        purpose = data.get("purpose", PURPOSE_SIGNUP)
        user = User.query.filter(db.func.lower(User.username) == email).first()

        if purpose == PURPOSE_SIGNUP and user is not None:
            raise Conflict("User already exists")
        if purpose == PURPOSE_RESET and user is None:
            raise NotFoundError("User not found")

        code = code_store.issue(email, purpose)
        ttl = app.config.get("CODE_TTL_MINUTES", 10)
        text = f"""Hello,

Your verification code is: {code}

It expires in {ttl} minutes. If you did not request it you can ignore this email.
"""
        success, message = sendmail(email, text, "Your verification code")
        if not success:
            raise UpstreamError(f"Failed to send verification code: {message}")

        app.logger.info(f"Verification code ({purpose}) sent to {email}")
        return jsonify({"message": "Verification code sent"})

    # API: Consume a signup code and create the account
    @app.route("/verify-code", methods=["POST"])
    def verify_code():
        data = _json()
        email = normalize_email(data.get("email"))
        password = validate_password(data.get("password"))

        if User.query.filter(db.func.lower(User.username) == email).first() is not None:
            raise Conflict("User already exists")

        code_store.consume(email, data.get("code"), PURPOSE_SIGNUP)
        user = User(username=email, password=hash_password(password))
        db.session.add(user)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict("User already exists")

        app.logger.info(f"User {user.id} signed up as {email}")
        return jsonify({
            "message": "Signup successful",
            "token": issue_token(user),
            "user": user.to_dict(),
        }), 201

    # API: Log in
    @app.route("/login", methods=["POST"])
    def login():
        data = _json()
        username = text_value(data.get("username") or data.get("email"), "username").lower()
        user = User.query.filter(db.func.lower(User.username) == username).first() if username else None
        if not verify_password(user, data.get("password")):
            raise ValidationError("Invalid login")
        return jsonify({"message": "Login successful", "token": issue_token(user), "user": user.to_dict()})

    # API: Reset password with a reset code
    @app.route("/forgetpassword", methods=["POST", "PUT"])
    def forget_password():
        data = _json()
        if not data.get("username"):
            raise ValidationError("Username(E-mail) is required")
        email = normalize_email(data.get("username"))
        password = validate_password(data.get("newPassword"))

        user = User.query.filter(db.func.lower(User.username) == email).first()
        if user is None:
            raise NotFoundError("User not found")

        code_store.consume(email, data.get("code"), PURPOSE_RESET)
        user.password = hash_password(password)
        _commit_or_rollback()
        app.logger.info(f"Password reset for user {user.id}")
        return jsonify({"message": "Password updated successfully"})

    # API: Current user
    @app.route("/me", methods=["GET"])
    @authed_only
    def me():
        return jsonify(get_current_user().to_dict())

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    # API: Create a team; the creator becomes its admin
    @app.route("/create-team", methods=["POST"])
    @authed_only
    def create_team():
        user = get_current_user()
        data = _json()
        name = text_value(data.get("name"), "name")
        if not name:
            raise ValidationError("Team name is required")

        team = Team(
            name=name,
            profile_picture=text_value(data.get("profilePicture"), "profilePicture") or None,
            owner_id=user.id,
        )
        team.members.append(TeamMember(user_id=user.id, role=ROLE_ADMIN))
        db.session.add(team)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict("A team with this name already exists")

        app.logger.info(f"Team {team.id} '{team.name}' created by user {user.id}")
        return jsonify({"message": "Team created", "team": team.to_dict()}), 201

    # API: Teams of the current user
    @app.route("/my-team", methods=["GET"])
    @authed_only
    def my_teams():
        user = get_current_user()
        memberships = TeamMember.query.filter_by(user_id=user.id).order_by(TeamMember.joined_at).all()
        teams = []
        for membership in memberships:
            entry = membership.team.to_dict()
            entry["role"] = membership.role
            teams.append(entry)
        return jsonify({"teams": teams})

    # API: Team detail
    @app.route("/team/<int:team_id>", methods=["GET"])
    @authed_only
    def get_team_detail(team_id):
        membership = require_member(team_id, get_current_user())
        team = membership.team
        data = team.to_dict()
        data["memberCount"] = len(team.members)
        data["role"] = membership.role
        return jsonify(data)

    # API: Current user's role in a team
    @app.route("/team/<int:team_id>/role", methods=["GET"])
    @authed_only
    def get_team_role(team_id):
        user = get_current_user()
        membership = require_member(team_id, user)
        return jsonify({"teamId": team_id, "userId": user.id, "role": membership.role})

    # API: Team members
    @app.route("/team/<int:team_id>/members", methods=["GET"])
    @authed_only
    def get_team_members(team_id):
        membership = require_member(team_id, get_current_user())
        members = sorted(membership.team.members, key=lambda m: m.user.username if m.user else "")
        return jsonify({"members": [member.to_dict() for member in members]})

    # API: Change a member's role
    @app.route("/team/<int:team_id>/members/<int:user_id>", methods=["PUT"])
    @authed_only
    def set_member_role(team_id, user_id):
        require_admin(team_id, get_current_user())
        role = text_value(_json().get("role"), "role").lower()
        if role not in ROLES:
            raise ValidationError("role must be 'admin' or 'tutor'")

        member = TeamMember.query.filter_by(team_id=team_id, user_id=user_id).first()
        if member is None:
            raise NotFoundError("Member not found")
        if member.team.owner_id == user_id and role != ROLE_ADMIN:
            raise Forbidden("The team owner must stay an admin")

        member.role = role
        _commit_or_rollback()
        app.logger.info(f"User {user_id} is now {role} in team {team_id}")
        return jsonify(member.to_dict())

    # API: Members with marking progress
    @app.route("/team/<int:team_id>/markers", methods=["GET"])
    @authed_only
    def get_team_markers(team_id):
        membership = require_member(team_id, get_current_user())
        return jsonify(marker_progress(membership.team))

    # API: Time-series of submitted marks
    @app.route("/team/<int:team_id>/chart-data", methods=["GET"])
    @authed_only
    def get_chart_data(team_id):
        require_member(team_id, get_current_user())
        months = request.args.get("months", 6, type=int)
        if months is None or months < 1 or months > 24:
            raise ValidationError("months must be between 1 and 24")
        return jsonify(chart_data(team_id, months=months))

    # ------------------------------------------------------------------
    # Invites
    # ------------------------------------------------------------------

    # API: Invite markers by e-mail
    @app.route("/team/<int:team_id>/invite", methods=["POST"])
    @authed_only
    def invite_members(team_id):
        user = get_current_user()
        require_admin(team_id, user)
        data = _json()
        emails = data.get("emails")
        if emails is None and data.get("email"):
            emails = [data.get("email")]
        if not isinstance(emails, list) or not emails:
            raise ValidationError("Add at least one email")

        results = []
        for email in emails:
            try:
                invite = invites.create_invite(team_id, user.id, email)
            except (ValidationError, Conflict) as e:
                results.append({"email": email, "status": "rejected", "emailSent": False, "message": e.message})
                continue

            success, message = invites.send_invite_email(invite)
            results.append({
                "email": invite.invitee_email,
                "status": invite.status,
                "token": invite.token,
                "emailSent": success,
                "message": "Invite sent" if success else f"Invite created but email failed: {message}",
            })

        failed = [r for r in results if not r["emailSent"]]
        app.logger.info(f"Team {team_id}: {len(results) - len(failed)} invites sent, {len(failed)} failed")
        return jsonify({"results": results}), (207 if failed else 201)

    # API: Invite detail
    @app.route("/team/invite/<token>", methods=["GET"])
    @authed_only
    def get_invite(token):
        user = get_current_user()
        invite = invites.get_invite(token)
        data = invite.to_dict()
        data["expired"] = invite.is_expired()
        data["canRespond"] = (
            invite.is_pending
            and not invite.is_expired()
            and user.username.lower() == invite.invitee_email.lower()
        )
        return jsonify(data)

    # API: Accept or deny an invite
    @app.route("/team/invite/<token>/respond", methods=["POST"])
    @authed_only
    def respond_to_invite(token):
        result = invites.respond(token, get_current_user().id, _json().get("action"))
        return jsonify(result)

    # API: Retry the invite e-mail
    @app.route("/team/invite/<token>/resend", methods=["POST"])
    @authed_only
    def resend_invite(token):
        invite = invites.get_invite(token)
        require_admin(invite.team_id, get_current_user())
        if not invite.is_pending or invite.is_expired():
            raise Expired("Only pending invites can be resent")

        success, message = invites.send_invite_email(invite)
        if not success:
            raise UpstreamError(f"Failed to send invite email: {message}")
        return jsonify({"message": "Invite sent", "email": invite.invitee_email})

    # ------------------------------------------------------------------
    # Assignments and rubric
    # ------------------------------------------------------------------

    # API: Assignments of a team
    @app.route("/team/<int:team_id>/assignments", methods=["GET"])
    @authed_only
    def get_assignments(team_id):
        require_member(team_id, get_current_user())
        assignments = Assignment.query.filter_by(team_id=team_id).order_by(Assignment.created_at.desc()).all()
        return jsonify({"assignments": [_assignment_summary(a) for a in assignments]})

    # API: Create assignment with rubric and tiers
    @app.route("/team/<int:team_id>/assignments", methods=["POST"])
    @authed_only
    def create_assignment(team_id):
        user = get_current_user()
        require_admin(team_id, user)
        data = _json()

        course_name = text_value(data.get("courseName"), "courseName") or None
        title = text_value(data.get("title"), "title") or course_name
        if not title:
            raise ValidationError("title is required")

        team = get_team(team_id)
        member_users = {m.user_id: m.user for m in team.members}

        standard_id = _int_or_none(data.get("standardMarkerId")) or user.id
        if standard_id not in member_users:
            raise ValidationError("The standard marker must be a team member")

        marker_ids = data.get("markers") or []
        if not isinstance(marker_ids, list):
            raise ValidationError("markers must be a list of user ids")
        markers = []
        for raw in marker_ids:
            marker_id = _int_or_none(raw.get("id") if isinstance(raw, dict) else raw)
            if marker_id not in member_users:
                raise ValidationError(f"Marker {raw} is not a member of this team")
            if member_users[marker_id] not in markers:
                markers.append(member_users[marker_id])
        if member_users[standard_id] not in markers:
            markers.insert(0, member_users[standard_id])

        assignment = Assignment(
            title=title,
            description=text_value(data.get("description"), "description") or None,
            course_code=text_value(data.get("courseCode"), "courseCode") or None,
            course_name=course_name,
            semester=str(data["semester"]) if data.get("semester") not in (None, "") else None,
            due_date=_parse_due_date(data.get("dueDate")),
            created_by=user.id,
            standard_marker_id=standard_id,
            team_id=team_id,
        )
        assignment.markers = markers
        try:
            build_criteria(assignment, data.get("rubric"))
            db.session.add(assignment)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        app.logger.info(
            f"Assignment {assignment.id} created in team {team_id} with {len(assignment.criteria)} criteria"
        )
        response = _assignment_summary(assignment)
        response["rubric"] = [c.to_dict() for c in assignment.criteria]
        return jsonify({"message": "Assignment created", "assignment": response}), 201

    # API: Assignment with rubric
    @app.route("/team/<int:team_id>/assignments/<int:assignment_id>", methods=["GET"])
    @authed_only
    def get_assignment(team_id, assignment_id):
        require_member(team_id, get_current_user())
        assignment = _get_assignment(team_id, assignment_id)
        return jsonify({
            "assignment": _assignment_summary(assignment),
            "rubric": [c.to_dict() for c in assignment.criteria],
        })

    # API: Delete assignment
    @app.route("/team/<int:team_id>/assignments/<int:assignment_id>", methods=["DELETE"])
    @authed_only
    def delete_assignment(team_id, assignment_id):
        require_admin(team_id, get_current_user())
        assignment = _get_assignment(team_id, assignment_id)
        db.session.delete(assignment)
        _commit_or_rollback()
        app.logger.info(f"Assignment {assignment_id} deleted from team {team_id}")
        return jsonify({"message": "Assignment deleted"})

    # API: Everything the marking and report pages need
    @app.route("/team/<int:team_id>/assignments/<int:assignment_id>/details", methods=["GET"])
    @authed_only
    def get_assignment_details(team_id, assignment_id):
        user = get_current_user()
        membership = require_member(team_id, user)
        assignment = _get_assignment(team_id, assignment_id)
        is_admin = membership.role == ROLE_ADMIN
        standard_id = assignment.standard_id

        control_papers = []
        for paper in assignment.submissions:
            by_marker = {}
            for mark in paper.marks:
                # Tutors see their own marks and the standard's
                if not is_admin and mark.tutor_id not in (user.id, standard_id):
                    continue
                entry = by_marker.setdefault(mark.tutor_id, {
                    "markerId": mark.tutor_id,
                    "markerName": mark.marker.username if mark.marker else None,
                    "scores": [],
                })
                entry["scores"].append({
                    "rubricCategoryId": mark.rubric_id,
                    "score": mark.marks_awarded,
                    "comment": mark.comments,
                })
            data = paper.to_dict()
            data["marks"] = list(by_marker.values())
            if is_admin:
                data["controlMarks"] = [c.to_dict() for c in paper.control_marks]
            control_papers.append(data)

        return jsonify({
            "assignmentDetails": _assignment_summary(assignment),
            "rubric": [c.to_dict() for c in assignment.criteria],
            "markers": [
                {"id": m.id, "name": m.username, "isStandard": m.id == standard_id}
                for m in assignment.markers
            ],
            "markersAlreadyMarked": markers_already_marked(assignment),
            "standardMarkerId": standard_id,
            "controlPapers": control_papers,
            "currentUser": {"id": user.id, "username": user.username, "role": membership.role},
        })

    # API: Edit a rubric criterion
    @app.route("/team/<int:team_id>/assignments/<int:assignment_id>/rubric-criteria/<int:criterion_id>", methods=["PUT"])
    @authed_only
    def edit_rubric_criterion(team_id, assignment_id, criterion_id):
        require_admin(team_id, get_current_user())
        criterion = _get_criterion(_get_assignment(team_id, assignment_id), criterion_id)
        data = _json()
        try:
            update_criterion(criterion, data)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return jsonify(criterion.to_dict())

    # API: Admin moderation comment on a criterion
    @app.route(
        "/team/<int:team_id>/assignments/<int:assignment_id>/rubric-criteria/<int:criterion_id>/admin-comment",
        methods=["POST"],
    )
    @authed_only
    def set_criterion_admin_comment(team_id, assignment_id, criterion_id):
        require_admin(team_id, get_current_user())
        criterion = _get_criterion(_get_assignment(team_id, assignment_id), criterion_id)
        set_admin_comment(criterion, _json().get("adminComment"))
        _commit_or_rollback()
        return jsonify(criterion.to_dict())

    # API: Add a control paper
    @app.route("/team/<int:team_id>/assignments/<int:assignment_id>/control-papers", methods=["POST"])
    @authed_only
    def add_control_paper(team_id, assignment_id):
        require_admin(team_id, get_current_user())
        assignment = _get_assignment(team_id, assignment_id)
        data = _json()
        paper = create_control_paper(assignment, data.get("studentIdentifier"), data.get("filePath"))
        return jsonify(paper.to_dict()), 201

    # API: Deviation comparison against the standard marker
    @app.route("/team/<int:team_id>/assignments/<int:assignment_id>/comparison", methods=["GET"])
    @authed_only
    def get_comparison(team_id, assignment_id):
        user = get_current_user()
        membership = require_member(team_id, user)
        assignment = _get_assignment(team_id, assignment_id)

        paper_id = request.args.get("paperId", type=int)
        papers = assignment.submissions
        if paper_id is not None:
            papers = [p for p in papers if p.id == paper_id]
            if not papers:
                raise NotFoundError("Control paper not found")

        results = []
        for paper in papers:
            criteria = compare_submission(paper, assignment.standard_id)
            if membership.role != ROLE_ADMIN:
                for row in criteria:
                    row["markerScores"] = [s for s in row["markerScores"] if s["markerId"] == user.id]
            results.append({"paperId": paper.id, "name": paper.student_identifier, "criteria": criteria})

        return jsonify({"standardMarkerId": assignment.standard_id, "papers": results})

    # API: Report statistics
    @app.route("/team/<int:team_id>/assignments/<int:assignment_id>/report", methods=["GET"])
    @authed_only
    def get_report(team_id, assignment_id):
        require_member(team_id, get_current_user())
        assignment = _get_assignment(team_id, assignment_id)
        stats = aggregate(assignment.id)
        stats["status"] = assignment_status(assignment)
        return jsonify(stats)

    # API: Report as PDF
    @app.route("/team/<int:team_id>/assignments/<int:assignment_id>/report.pdf", methods=["GET"])
    @authed_only
    def download_report(team_id, assignment_id):
        require_admin(team_id, get_current_user())
        assignment = _get_assignment(team_id, assignment_id)
        standard = assignment.standard_marker or assignment.creator
        pdf_buffer = generate_assignment_report_pdf(
            title=assignment.title,
            stats=aggregate(assignment.id),
            rubric=[c.to_dict() for c in assignment.criteria],
            papers=build_report_rows(assignment),
            standard_name=standard.username if standard else None,
        )
        pdf_data = pdf_buffer.read()
        filename = f"report_{assignment.id}_{datetime.utcnow().strftime('%Y%m%d')}.pdf"

        response = make_response(pdf_data)
        response.headers['Content-Type'] = 'application/pdf'
        response.headers['Content-Disposition'] = f'inline; filename="{filename}"'
        response.headers['Content-Length'] = str(len(pdf_data))
        return response

    # ------------------------------------------------------------------
    # Marking
    # ------------------------------------------------------------------

    def _assignment_for_marking(assignment_id):
        assignment = db.session.get(Assignment, assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment not found")
        return assignment

    # API: Submit marks for a control paper
    @app.route("/assignments/<int:assignment_id>/mark", methods=["POST"])
    @authed_only
    def submit_assignment_marks(assignment_id):
        user = get_current_user()
        assignment = _assignment_for_marking(assignment_id)
        require_member(assignment.team_id, user)
        data = _json()

        marks = submit_marks(assignment, _int_or_none(data.get("paperId")), user, data.get("scores"))
        return jsonify({"message": "Marks submitted", "marks": [m.to_dict() for m in marks]})

    # API: Official control marks
    @app.route("/assignments/<int:assignment_id>/control-marks", methods=["POST"])
    @authed_only
    def submit_assignment_control_marks(assignment_id):
        assignment = _assignment_for_marking(assignment_id)
        require_admin(assignment.team_id, get_current_user())
        data = _json()

        paper_id = _int_or_none(data.get("paperId"))
        paper = next((p for p in assignment.submissions if p.id == paper_id), None)
        if paper is None:
            raise NotFoundError("Control paper not found")
        scores = data.get("scores")
        if not isinstance(scores, list) or not scores:
            raise ValidationError("scores must be a non-empty list")

        saved = []
        try:
            for entry in scores:
                if not isinstance(entry, dict):
                    raise ValidationError("Each score must be an object")
                saved.append(submit_control_mark(
                    paper.id, _int_or_none(entry.get("criterionId")), entry.get("score"), entry.get("comment")
                ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return jsonify({"message": "Control marks saved", "controlMarks": [c.to_dict() for c in saved]})
