"""
Triage Module
=============

Bounded Context for assessment triage.

Responsibilities:
- Validate completeness of a submitted operational assessment
- Score every answered business domain and weight it by industry
- Enrich scores with one batched reasoning-model call, falling back to
  deterministic scores when the call is unavailable
- Select the 3-5 critical domains that get a deep-dive agent pass
"""

__version__ = "1.0.0"
