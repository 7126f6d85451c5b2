"""
Error Taxonomy for AutoGrade
Every service-level failure is a GraderError carrying its HTTP status and a stable code.
"""


class GraderError(Exception):
    """Base class for all grading, key-store and gateway failures."""
    status_code = 400
    code = "grader_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DuplicateCode(GraderError):
    status_code = 409
    code = "duplicate_code"


class LastCodeProtected(GraderError):
    status_code = 409
    code = "last_code_protected"


class NotFound(GraderError):
    """Unknown exam code."""
    status_code = 404
    code = "not_found"


class InvalidExamCode(GraderError):
    status_code = 422
    code = "invalid_exam_code"


class EmptyKey(GraderError):
    """Grading attempted with no answers set in the key."""
    status_code = 422
    code = "empty_key"


class AnalysisFailed(GraderError):
    """The gateway call failed or returned unparsable content."""
    status_code = 502
    code = "analysis_failed"


class ConfigOutOfRange(GraderError):
    status_code = 422
    code = "config_out_of_range"


class QuestionOutOfRange(GraderError):
    status_code = 422
    code = "question_out_of_range"


class InvalidAnswer(GraderError):
    """Option letter outside the configured alphabet."""
    status_code = 422
    code = "invalid_answer"


class InvalidImage(GraderError):
    status_code = 422
    code = "invalid_image"


class NoImage(GraderError):
    status_code = 409
    code = "no_image"


class NoResult(GraderError):
    status_code = 409
    code = "no_result"


class SessionBusy(GraderError):
    """A gateway request is already in flight for this session."""
    status_code = 409
    code = "session_busy"


class MissingApiKey(GraderError, ValueError):
    status_code = 500
    code = "missing_api_key"
