from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Boolean, Integer, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from ..core.database import Base
from .event import new_id


class QuestionType:
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    CODING = "coding"

    ALL = (MULTIPLE_CHOICE, TRUE_FALSE, SHORT_ANSWER, CODING)


class Question(Base):
    """Question bank entry for a round.

    Single-table hierarchy discriminated by ``question_type``; each subclass
    exposes its own ``answer_key``.
    """
    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, index=True, default=new_id)
    round_id = Column(String(36), ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    question_type = Column(String, nullable=False)
    question_number = Column(Integer, nullable=False, default=1)
    question_text = Column(Text, nullable=False)
    points = Column(Integer, nullable=False, default=1)

    options = Column(JSON, nullable=True)
    correct_answer = Column(Text, nullable=True)
    reference_answer = Column(Text, nullable=True)
    expected_output = Column(Text, nullable=True)
    test_cases = Column(JSON, nullable=True)
    auto_grade = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    round = relationship("Round", back_populates="questions")

    __mapper_args__ = {
        "polymorphic_on": question_type,
    }

    @property
    def answer_key(self):
        raise NotImplementedError


class MultipleChoiceQuestion(Question):
    __mapper_args__ = {"polymorphic_identity": QuestionType.MULTIPLE_CHOICE}

    @property
    def answer_key(self):
        return self.correct_answer


class TrueFalseQuestion(Question):
    __mapper_args__ = {"polymorphic_identity": QuestionType.TRUE_FALSE}

    @property
    def answer_key(self):
        if self.correct_answer is None:
            return None
        return self.correct_answer.strip().lower() == "true"


class ShortAnswerQuestion(Question):
    __mapper_args__ = {"polymorphic_identity": QuestionType.SHORT_ANSWER}

    @property
    def answer_key(self):
        return self.reference_answer


class CodingQuestion(Question):
    __mapper_args__ = {"polymorphic_identity": QuestionType.CODING}

    @property
    def answer_key(self):
        return self.expected_output
