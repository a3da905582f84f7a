"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. A triage call either returns a
complete result or raises MalformedAssessmentError / InsufficientDataError;
everything else here is either fatal at construction or absorbed internally.
"""

from typing import Optional, Dict


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ConfigurationError(ApplicationException):
    """Fatal configuration problem (e.g. missing enrichment credential). Never retried."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """Exception for LLM API failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM Service", message, details)


class EnrichmentUnavailable(LLMException):
    """
    Enrichment attempt failed, timed out or returned unusable content.

    Always recovered inside the enrichment client by switching to
    fallback mode.
    """

    def __init__(self, reason: str, message: str, details: Optional[dict] = None):
        self.reason = reason
        super().__init__(message, {"reason": reason, **(details or {})})


class MalformedAssessmentError(ValidationException):
    """Assessment has no domain responses at all."""

    def __init__(self, assessment_id: Optional[str] = None):
        self.assessment_id = assessment_id
        super().__init__(
            "Assessment has no domain responses",
            {"assessment_id": assessment_id}
        )


class InsufficientDataError(ValidationException):
    """No domain can be scored: each is excluded, unanswered or below the completeness threshold."""

    def __init__(
        self,
        threshold: float,
        completeness: Dict[str, float],
        assessment_id: Optional[str] = None,
        skipped_domains: Optional[Dict[str, str]] = None
    ):
        self.threshold = threshold
        self.completeness = completeness
        self.assessment_id = assessment_id
        self.skipped_domains = skipped_domains or {}

        message = f"No domain can be scored (required completeness {threshold * 100:.0f}%)"
        if self.skipped_domains:
            reasons = ", ".join(f"{name}: {reason}" for name, reason in sorted(self.skipped_domains.items()))
            message = f"{message}; skipped {reasons}"

        super().__init__(
            message,
            {
                "assessment_id": assessment_id,
                "threshold": threshold,
                "completeness": completeness,
                "skipped_domains": self.skipped_domains
            }
        )


class SelectionInvariantViolation(DomainException):
    """Critical domain selection produced fewer domains than the minimum."""

    def __init__(self, selected: int, scored: int, minimum: int):
        self.selected = selected
        self.scored = scored
        self.minimum = minimum
        super().__init__(
            f"Selected {selected} critical domains from {scored} scored (minimum {minimum})",
            {"selected": selected, "scored": scored, "minimum": minimum}
        )
