"""
Rubric authoring: criteria and the five standard grade tiers derived from a
criterion's total points.
"""
import math
import logging

from ..errors import ValidationError, text_value
from ..models import RubricCriterion, RubricTier

logger = logging.getLogger(__name__)

TIER_LABELS = ["High Distinction", "Distinction", "Credit", "Pass", "Fail"]

# Lower-bound breakpoints as a fraction of the criterion's total points.
TIER_BREAKPOINTS = {
    "High Distinction": 0.85,
    "Distinction": 0.75,
    "Credit": 0.65,
    "Pass": 0.50,
    "Fail": 0.0,
}

STEP = 0.5
MIN_TOTAL_POINTS = 2


def round_half(value):
    """Round to the nearest half mark, halves away from zero."""
    scaled = abs(value) * 2
    rounded = math.floor(scaled + 0.5) / 2
    return rounded if value >= 0 else -rounded


def generate_tiers(total_points):
    """
    Build the five tiers for a criterion worth ``total_points``.

    Returns a list of dicts (``name``, ``lower_bound``, ``upper_bound``)
    ordered from High Distinction down to Fail. The bands are contiguous in
    half-mark steps and together cover ``[0, total_points]``.
    """
    if isinstance(total_points, bool) or not isinstance(total_points, (int, float)):
        raise ValidationError("Total points must be a number")
    if total_points < MIN_TOTAL_POINTS:
        raise ValidationError(f"Total points must be at least {MIN_TOTAL_POINTS}")

    # Lower bounds bottom-up (Fail first), each at least one step above the last
    lowers = []
    for label in reversed(TIER_LABELS):
        lower = round_half(total_points * TIER_BREAKPOINTS[label])
        if lowers:
            lower = max(lower, lowers[-1] + STEP)
        lowers.append(lower)
    lowers.reverse()

    # Cap top-down so nothing climbs past the total
    ceiling = total_points
    for i, label in enumerate(TIER_LABELS[:-1]):
        lowers[i] = min(lowers[i], ceiling)
        ceiling = lowers[i] - STEP

    tiers = []
    upper = total_points
    for label, lower in zip(TIER_LABELS, lowers):
        tiers.append({"name": label, "lower_bound": lower, "upper_bound": upper})
        upper = lower - STEP
    return tiers


def _coerce_points(value):
    if isinstance(value, bool):
        raise ValidationError("Points must be a whole number")
    try:
        points = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Points must be a whole number")
    if points != value and str(points) != str(value).strip():
        raise ValidationError("Points must be a whole number")
    if points < MIN_TOTAL_POINTS:
        raise ValidationError(f"Points must be at least {MIN_TOTAL_POINTS}")
    return points


def _coerce_deviation(value):
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ValidationError("Deviation must be a number")
    try:
        deviation = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Deviation must be a number")
    if not math.isfinite(deviation) or deviation < 0 or deviation > 100:
        raise ValidationError("Deviation must be a percentage between 0 and 100")
    return deviation


def _tier_descriptions(raw_tiers):
    """
    Map client-supplied tier text onto tier labels. Entries may be strings
    (matched by position) or dicts carrying ``name`` and/or ``description``.
    """
    descriptions = {}
    for index, tier in enumerate(raw_tiers or []):
        if isinstance(tier, dict):
            label = tier.get("name")
            text = tier.get("description", tier.get("value"))
        else:
            label, text = None, tier
        if label not in TIER_LABELS:
            if index >= len(TIER_LABELS):
                continue
            label = TIER_LABELS[index]
        if text is not None:
            descriptions[label] = str(text).strip()
    return descriptions


def build_tier_rows(total_points, descriptions=None):
    descriptions = descriptions or {}
    return [
        RubricTier(
            name=tier["name"],
            description=descriptions.get(tier["name"], ""),
            lower_bound=tier["lower_bound"],
            upper_bound=tier["upper_bound"],
            position=position,
        )
        for position, tier in enumerate(generate_tiers(total_points))
    ]


def build_criteria(assignment, rubric_payload):
    """
    Create the criteria (and their tiers) for ``assignment`` from the request
    payload. Rows are attached to the assignment; the caller commits.
    """
    if not isinstance(rubric_payload, list) or not rubric_payload:
        raise ValidationError("Rubric must contain at least one criterion")

    criteria = []
    for position, raw in enumerate(rubric_payload):
        if not isinstance(raw, dict):
            raise ValidationError("Each rubric criterion must be an object")
        name = text_value(raw.get("name"), "name") or text_value(raw.get("criteria"), "criteria")
        if not name:
            raise ValidationError(f"Criterion {position + 1} needs a name")
        points = _coerce_points(raw.get("points", raw.get("maxMarks")))
        criterion = RubricCriterion(
            section_name=name,
            description=text_value(raw.get("description"), "description") or None,
            max_marks=points,
            deviation_threshold=_coerce_deviation(raw.get("deviation")),
            position=position,
        )
        criterion.tiers = build_tier_rows(points, _tier_descriptions(raw.get("tiers")))
        assignment.criteria.append(criterion)
        criteria.append(criterion)
    return criteria


def regenerate_tiers(criterion, total_points):
    """
    Replace every tier of ``criterion`` with freshly generated bands for
    ``total_points``. Descriptions survive by tier label.
    """
    kept = {tier.name: tier.description for tier in criterion.tiers if tier.description}
    criterion.tiers = build_tier_rows(total_points, kept)
    criterion.max_marks = total_points
    logger.info("Regenerated tiers for criterion %s (%s points)", criterion.id, total_points)
    return criterion.tiers


def update_criterion(criterion, payload):
    """Apply an edit to a criterion. A change of points regenerates tiers."""
    if "name" in payload:
        name = text_value(payload.get("name"), "name")
        if not name:
            raise ValidationError("Criterion name cannot be empty")
        criterion.section_name = name
    if "description" in payload:
        criterion.description = text_value(payload.get("description"), "description") or None
    if "deviation" in payload:
        criterion.deviation_threshold = _coerce_deviation(payload.get("deviation"))
    if "tiers" in payload:
        descriptions = _tier_descriptions(payload.get("tiers"))
        for tier in criterion.tiers:
            if tier.name in descriptions:
                tier.description = descriptions[tier.name]
    if "points" in payload:
        points = _coerce_points(payload.get("points"))
        if points != criterion.max_marks:
            regenerate_tiers(criterion, points)
    return criterion


def set_admin_comment(criterion, comment):
    criterion.admin_comment = text_value(comment, "adminComment") or None
    return criterion
