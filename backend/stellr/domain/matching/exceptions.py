"""Domain-level exceptions for compatibility scoring and candidate retrieval."""

from __future__ import annotations


class MatchingError(Exception):
    """Base class for matching feature errors.

    ``reason`` is the stable code surfaced to clients; ``status_code`` is the
    HTTP-style status the API layer maps it to.
    """

    reason: str = "matching_error"
    status_code: int = 500
    message: str = "Matching request failed"

    def __init__(self, reason: str | None = None, message: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason
        if message:
            self.message = message


class InvalidMatchRequest(MatchingError):
    reason = "invalid_request"
    status_code = 400
    message = "The request is malformed"


class BatchTooLarge(InvalidMatchRequest):
    reason = "batch_too_large"
    message = "Too many candidates requested in one batch"


class CompatibilityForbidden(MatchingError):
    reason = "forbidden"
    status_code = 403
    message = "Viewer is not permitted to see this candidate"


class ProfileNotFound(MatchingError):
    reason = "profile_not_found"
    status_code = 404
    message = "Profile not found"


class InsufficientData(MatchingError):
    reason = "insufficient_data"
    status_code = 422
    message = "Birth data or questionnaire answers are missing"


class ScoringFailed(MatchingError):
    """Raised when a grader fails or returns something that is not a grade."""

    reason = "scoring_failed"
    status_code = 502
    message = "Compatibility could not be calculated"


class CandidateQueryError(MatchingError):
    reason = "candidate_query_failed"
    status_code = 500
    message = "Candidate lookup failed"
