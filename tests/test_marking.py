"""
Test: Marking — score validation, idempotent resubmission, batches, control marks.
"""
import pytest

from marking_app.errors import ValidationError, NotFoundError, Forbidden
from marking_app.models import db, Assignment, Mark, ControlMark, Submission
from marking_app.utils.rubric import build_criteria
from marking_app.utils.marking import (
    submit_mark, submit_marks, submit_control_mark, create_control_paper,
    completed_markers, markers_already_marked, can_mark,
)


class TestSubmitMark:
    def test_resubmission_overwrites(self, assignment, team):
        paper = assignment.submissions[0]
        argument = assignment.criteria[0]

        first = submit_mark(paper.id, argument.id, team["tutor"].id, 4, "Thin")
        second = submit_mark(paper.id, argument.id, team["tutor"].id, 6, "Better on reread")

        assert first.id == second.id
        marks = Mark.query.filter_by(submission_id=paper.id, tutor_id=team["tutor"].id).all()
        assert len(marks) == 1
        assert marks[0].marks_awarded == 6
        assert marks[0].comments == "Better on reread"

    def test_markers_do_not_share_rows(self, assignment, team):
        paper = assignment.submissions[0]
        argument = assignment.criteria[0]
        submit_mark(paper.id, argument.id, team["tutor"].id, 4)
        submit_mark(paper.id, argument.id, team["admin"].id, 5)
        assert Mark.query.filter_by(submission_id=paper.id).count() == 2

    @pytest.mark.parametrize("score", [-1, 11, 2.5, "7", None, True])
    def test_invalid_scores(self, assignment, team, score):
        paper = assignment.submissions[0]
        with pytest.raises(ValidationError):
            submit_mark(paper.id, assignment.criteria[0].id, team["tutor"].id, score)

    def test_whole_float_accepted(self, assignment, team):
        paper = assignment.submissions[0]
        mark = submit_mark(paper.id, assignment.criteria[0].id, team["tutor"].id, 10.0)
        assert mark.marks_awarded == 10

    def test_criterion_from_another_assignment(self, assignment, team):
        other = Assignment(title="Other", created_by=team["admin"].id, team_id=team["team"].id)
        build_criteria(other, [{"name": "Elsewhere", "points": 10}])
        db.session.add(other)
        db.session.commit()

        with pytest.raises(NotFoundError):
            submit_mark(assignment.submissions[0].id, other.criteria[0].id, team["tutor"].id, 5)

    def test_unknown_paper_and_marker(self, assignment, team):
        with pytest.raises(NotFoundError):
            submit_mark(999, assignment.criteria[0].id, team["tutor"].id, 5)
        with pytest.raises(NotFoundError):
            submit_mark(assignment.submissions[0].id, assignment.criteria[0].id, 999, 5)


class TestSubmitMarks:
    def test_batch(self, assignment, team):
        paper = assignment.submissions[0]
        argument, style = assignment.criteria
        marks = submit_marks(assignment, paper.id, team["tutor"], [
            {"criterionId": argument.id, "score": 7, "comment": "Solid"},
            {"criterionId": style.id, "score": 4},
        ])
        assert [m.marks_awarded for m in marks] == [7, 4]
        assert Mark.query.filter_by(tutor_id=team["tutor"].id).count() == 2

    def test_bad_entry_writes_nothing(self, assignment, team):
        paper = assignment.submissions[0]
        argument, style = assignment.criteria
        with pytest.raises(ValidationError):
            submit_marks(assignment, paper.id, team["tutor"], [
                {"criterionId": argument.id, "score": 7},
                {"criterionId": style.id, "score": 6},
            ])
        assert Mark.query.count() == 0

    def test_unassigned_tutor_forbidden(self, assignment, team):
        assert not can_mark(assignment, team["spare"])
        with pytest.raises(Forbidden):
            submit_marks(assignment, assignment.submissions[0].id, team["spare"], [
                {"criterionId": assignment.criteria[0].id, "score": 5},
            ])

    def test_empty_scores(self, assignment, team):
        with pytest.raises(ValidationError):
            submit_marks(assignment, assignment.submissions[0].id, team["tutor"], [])

    def test_paper_of_another_assignment(self, assignment, team):
        with pytest.raises(NotFoundError):
            submit_marks(assignment, 999, team["tutor"], [{"criterionId": 1, "score": 1}])


class TestControlMarks:
    def test_set_then_update(self, assignment):
        paper = assignment.submissions[0]
        argument = assignment.criteria[0]

        submit_control_mark(paper.id, argument.id, 8, "Agreed at moderation")
        db.session.commit()
        submit_control_mark(paper.id, argument.id, 9)
        db.session.commit()

        controls = ControlMark.query.filter_by(submission_id=paper.id).all()
        assert len(controls) == 1
        assert controls[0].official_marks == 9
        assert Mark.query.count() == 0

    def test_create_control_paper(self, assignment):
        paper = create_control_paper(assignment, "  Paper B ", "/uploads/b.pdf")
        assert paper.student_identifier == "Paper B"
        assert Submission.query.filter_by(assignment_id=assignment.id).count() == 2

    def test_control_paper_needs_identifier(self, assignment):
        with pytest.raises(ValidationError):
            create_control_paper(assignment, "   ")


class TestProgress:
    def test_completed_markers(self, assignment, team):
        paper = assignment.submissions[0]
        argument, style = assignment.criteria

        submit_mark(paper.id, argument.id, team["tutor"].id, 6)
        assert completed_markers(assignment) == set()

        submit_mark(paper.id, style.id, team["tutor"].id, 3)
        assert completed_markers(assignment) == {team["tutor"].id}
        assert markers_already_marked(assignment) == 1

    def test_nothing_to_mark(self, team):
        empty = Assignment(title="Empty", created_by=team["admin"].id, team_id=team["team"].id)
        db.session.add(empty)
        db.session.commit()
        assert completed_markers(empty) == set()
