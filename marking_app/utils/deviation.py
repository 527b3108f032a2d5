"""
Marker deviation against the standard marker.

Every non-standard marker's score on a criterion is compared with the
standard marker's score for the same control paper. The criterion's
threshold is stored as a percentage of its maximum marks and converted to
an absolute mark value here.
"""
import math

from ..errors import NotFoundError
from ..models import db, Submission
from .marking import scores_by_marker

WITHIN = "within"
AT_THRESHOLD = "at_threshold"
OUTSIDE = "outside"
UNDETERMINED = "undetermined"

CLASSIFICATIONS = (WITHIN, AT_THRESHOLD, OUTSIDE, UNDETERMINED)

_TOLERANCE = 1e-9


def absolute_threshold(percentage, max_marks):
    return (percentage or 0) / 100.0 * max_marks


def classify(marker_score, standard_score, threshold):
    """Classify one score. ``threshold`` is an absolute mark value."""
    if standard_score is None or marker_score is None:
        return UNDETERMINED
    difference = abs(marker_score - standard_score)
    if math.isclose(difference, threshold, rel_tol=0.0, abs_tol=_TOLERANCE):
        return AT_THRESHOLD
    if difference < threshold:
        return WITHIN
    return OUTSIDE


def compare_submission(submission, standard_marker_id):
    """Comparison rows for an already-loaded control paper."""
    table = scores_by_marker(submission)
    standard_scores = table.get(standard_marker_id, {})
    markers = {mark.tutor_id: mark.marker for mark in submission.marks}

    comparisons = []
    for criterion in submission.assignment.criteria:
        threshold = absolute_threshold(criterion.deviation_threshold, criterion.max_marks)
        standard = standard_scores.get(criterion.id)
        rows = []
        for marker_id in sorted(table):
            if marker_id == standard_marker_id or criterion.id not in table[marker_id]:
                continue
            score = table[marker_id][criterion.id]
            rows.append({
                "markerId": marker_id,
                "markerName": markers[marker_id].username if markers.get(marker_id) else None,
                "score": score,
                "difference": abs(score - standard) if standard is not None else None,
                "classification": classify(score, standard, threshold),
            })
        comparisons.append({
            "criterionId": criterion.id,
            "criterionName": criterion.section_name,
            "maxMarks": criterion.max_marks,
            "threshold": threshold,
            "standardScore": standard,
            "markerScores": rows,
        })
    return comparisons


def compare(submission_id, standard_marker_id):
    """
    Classify every other marker's score on every criterion of a control
    paper relative to ``standard_marker_id``. Read only.
    """
    submission = db.session.get(Submission, submission_id)
    if submission is None:
        raise NotFoundError("Control paper not found")
    return compare_submission(submission, standard_marker_id)
