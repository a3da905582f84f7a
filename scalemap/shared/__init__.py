"""
Shared Kernel Module
====================

Generic infrastructure used by the triage bounded context: structured
logging, request middleware and metrics export.

DO NOT add triage business logic to the shared kernel.
"""

__version__ = "1.0.0"
