"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Reasoning-model (LLM) clients
"""
