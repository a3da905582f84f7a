"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from scalemap.core.exceptions import (
    ApplicationException,
    DomainException,
    ValidationException,
    ConfigurationError,
    ExternalServiceException,
    LLMException,
    EnrichmentUnavailable,
    MalformedAssessmentError,
    InsufficientDataError,
    SelectionInvariantViolation,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "ValidationException",
    "ConfigurationError",
    "ExternalServiceException",
    "LLMException",
    "EnrichmentUnavailable",
    "MalformedAssessmentError",
    "InsufficientDataError",
    "SelectionInvariantViolation",
]
