"""
ScaleMap Triage
===============

Assessment triage engine: scores a multi-domain operational assessment
and selects the critical domains for expert agent analysis.
"""

__version__ = "1.0.0"
