"""
Report statistics for control paper marking.
"""
import calendar
import logging
import math
from datetime import datetime

from ..errors import NotFoundError
from ..models import db, Assignment, Submission, Mark
from .deviation import compare_submission, WITHIN, OUTSIDE, AT_THRESHOLD, UNDETERMINED
from .marking import completed_markers, markers_already_marked

logger = logging.getLogger(__name__)

STATUS_MARKING = "MARKING"
STATUS_COMPLETED = "COMPLETED"


def _round1(value):
    return math.floor(value * 10 + 0.5) / 10


def empty_stats():
    return {
        "totalSubmissions": 0,
        "averageScorePercent": 0,
        "withinDeviationCount": 0,
        "outsideDeviationCount": 0,
        "atThresholdCount": 0,
        "undeterminedCount": 0,
        "openFlagsCount": 0,
    }


def aggregate(assignment_id):
    """
    Summary statistics for one assignment.

    Returns zeroed stats when nothing has been marked yet.

    Args:
        assignment_id (int): Assignment ID

    Returns:
        dict: totalSubmissions, averageScorePercent, withinDeviationCount,
        outsideDeviationCount, atThresholdCount, undeterminedCount,
        openFlagsCount
    """
    assignment = db.session.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFoundError("Assignment not found")

    stats = empty_stats()
    scores = [mark.marks_awarded for sub in assignment.submissions for mark in sub.marks]
    if not scores:
        return stats

    stats["totalSubmissions"] = len(assignment.submissions)

    total_points = assignment.total_points
    if total_points > 0:
        mean = sum(scores) / len(scores)
        stats["averageScorePercent"] = _round1(mean / total_points * 100)

    tally_keys = {
        WITHIN: "withinDeviationCount",
        OUTSIDE: "outsideDeviationCount",
        AT_THRESHOLD: "atThresholdCount",
        UNDETERMINED: "undeterminedCount",
    }
    for submission in assignment.submissions:
        for row in compare_submission(submission, assignment.standard_id):
            for marker_score in row["markerScores"]:
                stats[tally_keys[marker_score["classification"]]] += 1

    stats["openFlagsCount"] = max(0, len(assignment.markers) - markers_already_marked(assignment))
    return stats


def assignment_status(assignment):
    if assignment.submissions and assignment.markers:
        if markers_already_marked(assignment) >= len(assignment.markers):
            return STATUS_COMPLETED
    return STATUS_MARKING


def marker_progress(team):
    """Per-member count of assigned and fully marked assignments in a team."""
    assignments = Assignment.query.filter_by(team_id=team.id).all()
    done = {assignment.id: completed_markers(assignment) for assignment in assignments}

    progress = []
    for member in sorted(team.members, key=lambda m: m.user.username if m.user else ""):
        assigned = [a for a in assignments if member.user in a.markers]
        entry = member.to_dict()
        entry["assignedCount"] = len(assigned)
        entry["completedCount"] = sum(1 for a in assigned if member.user_id in done[a.id])
        progress.append(entry)
    return progress


def _month_window(months, now):
    year, month = now.year, now.month
    window = []
    for _ in range(months):
        window.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(window))


def chart_data(team_id, months=6, now=None):
    """
    Number of marks submitted per calendar month for a team's assignments,
    oldest month first.
    """
    now = now or datetime.utcnow()
    window = _month_window(months, now)
    counts = {key: 0 for key in window}

    start = datetime(window[0][0], window[0][1], 1)
    created = (
        db.session.query(Mark.created_at)
        .join(Submission, Mark.submission_id == Submission.id)
        .join(Assignment, Submission.assignment_id == Assignment.id)
        .filter(Assignment.team_id == team_id)
        .filter(Mark.created_at >= start)
        .all()
    )
    for (created_at,) in created:
        key = (created_at.year, created_at.month)
        if key in counts:
            counts[key] += 1

    return [
        {"month": calendar.month_name[month], "year": year, "total": counts[(year, month)]}
        for year, month in window
    ]


def build_report_rows(assignment):
    """
    Flatten an assignment's comparison data for the PDF export: one entry
    per control paper with its per-criterion rows.
    """
    papers = []
    for submission in assignment.submissions:
        papers.append({
            "paper": submission.student_identifier,
            "criteria": compare_submission(submission, assignment.standard_id),
        })
    logger.debug("Built report rows for assignment %s (%d papers)", assignment.id, len(papers))
    return papers
