"""
Control paper marking: tutor marks, official control marks and marking
progress per marker.
"""
import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError, NotFoundError, Forbidden, text_value
from ..models import (
    db, User, Submission, RubricCriterion, Mark, ControlMark, TeamMember, ROLE_ADMIN,
)

logger = logging.getLogger(__name__)


def validate_score(score, criterion):
    """Return ``score`` as an int, or raise ValidationError."""
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise ValidationError(f"Score for '{criterion.section_name}' must be a whole number")
    if isinstance(score, float):
        if not score.is_integer():
            raise ValidationError(f"Score for '{criterion.section_name}' must be a whole number")
        score = int(score)
    if score < 0 or score > criterion.max_marks:
        raise ValidationError(
            f"Score for '{criterion.section_name}' must be between 0 and {criterion.max_marks}"
        )
    return score


def _resolve(submission_id, criterion_id):
    submission = db.session.get(Submission, submission_id) if submission_id is not None else None
    if submission is None:
        raise NotFoundError("Control paper not found")
    criterion = db.session.get(RubricCriterion, criterion_id) if criterion_id is not None else None
    if criterion is None or criterion.assignment_id != submission.assignment_id:
        raise NotFoundError("Rubric criterion not found for this control paper")
    return submission, criterion


def _upsert_mark(submission, criterion, marker_id, score, comment):
    mark = Mark.query.filter_by(
        submission_id=submission.id, rubric_id=criterion.id, tutor_id=marker_id
    ).first()
    if mark is None:
        mark = Mark(
            submission_id=submission.id,
            rubric_id=criterion.id,
            tutor_id=marker_id,
            marks_awarded=score,
            comments=comment,
        )
        try:
            with db.session.begin_nested():
                db.session.add(mark)
        except IntegrityError:
            # Another request inserted the same key first; last write wins.
            mark = Mark.query.filter_by(
                submission_id=submission.id, rubric_id=criterion.id, tutor_id=marker_id
            ).one()
        else:
            return mark
    mark.marks_awarded = score
    mark.comments = comment
    mark.updated_at = datetime.utcnow()
    return mark


def submit_mark(submission_id, criterion_id, marker_id, score, comment=None):
    """
    Record ``marker_id``'s score for one criterion of a control paper.
    Re-submitting for the same (paper, criterion, marker) overwrites.
    """
    submission, criterion = _resolve(submission_id, criterion_id)
    if marker_id is None or db.session.get(User, marker_id) is None:
        raise NotFoundError("Marker not found")
    score = validate_score(score, criterion)
    try:
        mark = _upsert_mark(submission, criterion, marker_id, score, comment)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return mark


def can_mark(assignment, user):
    """Assigned markers and team admins may mark an assignment."""
    if user in assignment.markers:
        return True
    membership = TeamMember.query.filter_by(team_id=assignment.team_id, user_id=user.id).first()
    return membership is not None and membership.role == ROLE_ADMIN


def submit_marks(assignment, submission_id, marker, scores):
    """
    Write a batch of scores for one control paper in a single transaction.

    ``scores`` is a list of ``{"criterionId", "score", "comment"}`` dicts.
    """
    if not can_mark(assignment, marker):
        raise Forbidden("You are not a marker for this assignment")
    if not isinstance(scores, list) or not scores:
        raise ValidationError("scores must be a non-empty list")

    submission = db.session.get(Submission, submission_id) if submission_id is not None else None
    if submission is None or submission.assignment_id != assignment.id:
        raise NotFoundError("Control paper not found")

    # Validate the whole batch before writing any of it
    checked = []
    for entry in scores:
        if not isinstance(entry, dict):
            raise ValidationError("Each score must be an object")
        submission, criterion = _resolve(submission.id, entry.get("criterionId"))
        score = validate_score(entry.get("score"), criterion)
        checked.append((criterion, score, entry.get("comment")))

    written = []
    try:
        for criterion, score, comment in checked:
            written.append(_upsert_mark(submission, criterion, marker.id, score, comment))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Marker %s submitted %d scores for control paper %s", marker.id, len(written), submission.id
    )
    return written


def submit_control_mark(submission_id, criterion_id, score, comment=None):
    """Set the official mark for a control paper criterion."""
    submission, criterion = _resolve(submission_id, criterion_id)
    score = validate_score(score, criterion)
    control = ControlMark.query.filter_by(submission_id=submission.id, rubric_id=criterion.id).first()
    if control is None:
        control = ControlMark(submission_id=submission.id, rubric_id=criterion.id)
        db.session.add(control)
    control.official_marks = score
    control.comments = comment
    return control


def create_control_paper(assignment, student_identifier, file_path=None):
    student_identifier = text_value(student_identifier, "studentIdentifier")
    if not student_identifier:
        raise ValidationError("studentIdentifier is required")
    paper = Submission(
        assignment_id=assignment.id,
        student_identifier=student_identifier,
        file_path=text_value(file_path, "filePath") or None,
    )
    db.session.add(paper)
    db.session.commit()
    logger.info("Control paper %s added to assignment %s", paper.id, assignment.id)
    return paper


def scores_by_marker(submission):
    """``{marker_id: {criterion_id: score}}`` for one control paper."""
    table = {}
    for mark in submission.marks:
        table.setdefault(mark.tutor_id, {})[mark.rubric_id] = mark.marks_awarded
    return table


def completed_markers(assignment):
    """
    Ids of users holding a mark for every criterion of every control paper.
    Nobody has completed an assignment without control papers or criteria.
    """
    criterion_ids = {c.id for c in assignment.criteria}
    if not assignment.submissions or not criterion_ids:
        return set()

    done = None
    for submission in assignment.submissions:
        finished = {
            marker_id
            for marker_id, scores in scores_by_marker(submission).items()
            if criterion_ids <= set(scores)
        }
        done = finished if done is None else done & finished
    return done or set()


def markers_already_marked(assignment):
    done = completed_markers(assignment)
    return sum(1 for marker in assignment.markers if marker.id in done)
