"""
Scoring engine.

Grading dispatches on ``question_type`` through an explicit registry; a
question type without a registered grader is a programming error and
raises ``UnsupportedQuestionType`` instead of silently scoring zero.

Auto-grading is exact matching only. When a question has no usable key the
answer is left ungraded (``awarded_points = None``) for manual review and
counted in ``pending_count``; pending answers are excluded from
``total_score`` until resolved.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from ..core.exceptions import (
    AttemptInProgress,
    AttemptNotFound,
    InvalidAnswer,
    QuestionNotFound,
    UnsupportedQuestionType,
)
from ..core.locks import attempt_locks
from ..models.attempt import Answer, TestAttempt
from ..models.audit_log import AuditLog
from ..models.question import Question, QuestionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Grade:
    awarded_points: Optional[int]
    is_correct: Optional[bool]

    @property
    def pending(self) -> bool:
        return self.awarded_points is None


@dataclass(frozen=True)
class ScoreSummary:
    total_score: int
    max_score: int
    pending_count: int

    @property
    def grading_pending(self) -> bool:
        return self.pending_count > 0


PENDING = Grade(awarded_points=None, is_correct=None)


def _all_or_nothing(question: Question, correct: bool) -> Grade:
    return Grade(awarded_points=question.points if correct else 0, is_correct=correct)


class QuestionGrader:
    question_type: str = ""

    def validate(self, question: Question, value: Any) -> Any:
        """Return the normalised value or raise InvalidAnswer"""
        raise NotImplementedError

    def grade(self, question: Question, value: Any) -> Grade:
        raise NotImplementedError

    def _require_text(self, question: Question, value: Any) -> str:
        if not isinstance(value, str):
            raise InvalidAnswer(
                f"Question {question.id} expects a text answer",
                question_id=question.id,
            )
        return value


class MultipleChoiceGrader(QuestionGrader):
    question_type = QuestionType.MULTIPLE_CHOICE

    @staticmethod
    def option_labels(question: Question) -> List[str]:
        labels = []
        for option in question.options or []:
            if isinstance(option, dict):
                labels.append(str(option.get("label", option.get("text", ""))))
            else:
                labels.append(str(option))
        return labels

    def validate(self, question, value):
        value = self._require_text(question, value)
        labels = self.option_labels(question)
        if labels and value not in labels:
            raise InvalidAnswer(
                f"'{value}' is not an option of question {question.id}",
                question_id=question.id,
            )
        return value

    def grade(self, question, value):
        if question.answer_key is None:
            return PENDING
        # Case-sensitive: option labels are identifiers, not prose
        return _all_or_nothing(question, value == question.answer_key)


class TrueFalseGrader(QuestionGrader):
    question_type = QuestionType.TRUE_FALSE

    def validate(self, question, value):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise InvalidAnswer(
            f"Question {question.id} expects true or false",
            question_id=question.id,
        )

    def grade(self, question, value):
        if question.answer_key is None:
            return PENDING
        return _all_or_nothing(question, value is question.answer_key)


class ShortAnswerGrader(QuestionGrader):
    question_type = QuestionType.SHORT_ANSWER

    def validate(self, question, value):
        return self._require_text(question, value)

    def grade(self, question, value):
        reference = question.answer_key
        if reference is None or not reference.strip():
            return PENDING
        return _all_or_nothing(question, value.strip().casefold() == reference.strip().casefold())


class CodingGrader(QuestionGrader):
    question_type = QuestionType.CODING

    def validate(self, question, value):
        return self._require_text(question, value)

    def grade(self, question, value):
        expected = question.answer_key
        if not question.auto_grade or expected is None:
            return PENDING
        return _all_or_nothing(question, value.strip() == expected.strip())


GRADERS: Dict[str, QuestionGrader] = {
    grader.question_type: grader
    for grader in (MultipleChoiceGrader(), TrueFalseGrader(), ShortAnswerGrader(), CodingGrader())
}


def grader_for(question: Question) -> QuestionGrader:
    grader = GRADERS.get(question.question_type)
    if grader is None:
        raise UnsupportedQuestionType(
            f"No grader for question type '{question.question_type}'",
            question_id=question.id,
        )
    return grader


def grade_question(question: Question, value: Any) -> Grade:
    if value is None:
        # Unanswered is a definite zero, never pending
        return Grade(awarded_points=0, is_correct=False)
    return grader_for(question).grade(question, value)


def summarize(questions: Iterable[Question], answers: Iterable[Answer]) -> ScoreSummary:
    max_score = sum(q.points for q in questions)
    total = 0
    pending = 0
    for answer in answers:
        if answer.awarded_points is None:
            pending += 1
        else:
            total += answer.awarded_points
    return ScoreSummary(total_score=total, max_score=max_score, pending_count=pending)


class ScoringEngine:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_round_questions(self, round_id: str) -> List[Question]:
        result = await self.db.execute(
            select(Question)
            .filter(Question.round_id == round_id)
            .order_by(Question.question_number)
        )
        return list(result.scalars().all())

    async def get_attempt_answers(self, attempt_id: str) -> List[Answer]:
        result = await self.db.execute(
            select(Answer).filter(Answer.attempt_id == attempt_id)
        )
        return list(result.scalars().all())

    async def grade_attempt(self, attempt: TestAttempt) -> ScoreSummary:
        """Grade every question of the attempt's round and store the totals on the attempt.

        Runs inside the caller's transaction; the caller commits.
        """
        questions = await self.get_round_questions(attempt.round_id)
        answers = {a.question_id: a for a in await self.get_attempt_answers(attempt.id)}

        graded: List[Answer] = []
        for question in questions:
            answer = answers.get(question.id)
            if answer is None:
                answer = Answer(attempt_id=attempt.id, question_id=question.id, value=None)
                self.db.add(answer)

            grade = grade_question(question, answer.value)
            answer.awarded_points = grade.awarded_points
            answer.is_correct = grade.is_correct
            graded.append(answer)

        summary = summarize(questions, graded)
        attempt.total_score = summary.total_score
        attempt.max_score = summary.max_score
        attempt.pending_count = summary.pending_count

        logger.info(
            f"Graded attempt {attempt.id}: {summary.total_score}/{summary.max_score}"
            f" ({summary.pending_count} pending)"
        )
        return summary

    async def grade_manually(
        self,
        attempt_id: str,
        question_id: str,
        awarded_points: int,
        admin_id: Optional[str] = None,
    ) -> Tuple[TestAttempt, ScoreSummary]:
        """Resolve a pending answer (or re-grade a manual one) after the attempt has finished.

        With ``admin_id`` the grade and its audit row are committed together.
        """
        async with attempt_locks.hold(attempt_id):
            attempt = await self.db.get(TestAttempt, attempt_id, populate_existing=True)
            if attempt is None:
                raise AttemptNotFound(f"Attempt {attempt_id} not found", attempt_id=attempt_id)
            if not attempt.is_terminal:
                raise AttemptInProgress(
                    "Manual grading is only possible once the attempt has finished",
                    attempt_id=attempt_id,
                    status=attempt.status,
                )

            questions = await self.get_round_questions(attempt.round_id)
            question = next((q for q in questions if q.id == question_id), None)
            if question is None:
                raise QuestionNotFound(f"Question {question_id} not found", question_id=question_id)
            if awarded_points < 0 or awarded_points > question.points:
                raise InvalidAnswer(
                    f"Question {question_id} takes between 0 and {question.points} points",
                    question_id=question_id,
                )

            answers = await self.get_attempt_answers(attempt_id)
            answer = next((a for a in answers if a.question_id == question_id), None)
            if answer is None:
                answer = Answer(attempt_id=attempt_id, question_id=question_id, value=None)
                self.db.add(answer)
                answers.append(answer)

            answer.awarded_points = awarded_points
            answer.is_correct = awarded_points == question.points
            answer.graded_manually = True

            summary = summarize(questions, answers)
            attempt.total_score = summary.total_score
            attempt.max_score = summary.max_score
            attempt.pending_count = summary.pending_count
            if admin_id is not None:
                self.db.add(AuditLog(
                    admin_id=admin_id,
                    action="grade_answer",
                    target_type="attempt",
                    target_id=attempt_id,
                    changes={"question_id": question_id, "awarded_points": awarded_points},
                ))
            await self.db.commit()
            await self.db.refresh(attempt)

        logger.info(
            f"Manually graded question {question_id} of attempt {attempt_id}: {awarded_points} points"
        )
        return attempt, summary
