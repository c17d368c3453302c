"""
Error taxonomy for the attempt engine.

Every error carries a stable ``code`` and the HTTP status the API layer
should answer with. Conditions that are states rather than failures
(late answers, the violation limit, a lost start race, pending grading)
are reported in responses and never raised.
"""


class ProctorError(Exception):
    """Base class for attempt-engine errors."""

    code = "proctor_error"
    http_status = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message}
        if self.context:
            payload["context"] = self.context
        return payload


class RulesNotFound(ProctorError):
    code = "rules_not_found"
    http_status = 404


class RoundNotFound(ProctorError):
    code = "round_not_found"
    http_status = 404


class AttemptNotFound(ProctorError):
    code = "attempt_not_found"
    http_status = 404


class ParticipantNotFound(ProctorError):
    code = "participant_not_found"
    http_status = 404


class QuestionNotFound(ProctorError):
    code = "question_not_found"
    http_status = 404


class RoundNotAcceptingAttempts(ProctorError):
    code = "round_not_accepting_attempts"
    http_status = 409


class TestNotEnabled(ProctorError):
    code = "test_not_enabled"
    http_status = 403


class AttemptAlreadyTerminal(ProctorError):
    code = "attempt_already_terminal"
    http_status = 409


class InvalidAnswer(ProctorError):
    code = "invalid_answer"
    http_status = 422


class InvalidOverride(ProctorError):
    code = "invalid_override"
    http_status = 422


class InvalidRoundTransition(ProctorError):
    code = "invalid_round_transition"
    http_status = 409


class UnsupportedQuestionType(ProctorError):
    code = "unsupported_question_type"
    http_status = 500


class AttemptInProgress(ProctorError):
    code = "attempt_in_progress"
    http_status = 409


class EventNotFound(ProctorError):
    code = "event_not_found"
    http_status = 404
