"""
Infrastructure Layer
=====================

Low-level technical concerns shared by the service:
- Structured logging setup
- Grafana OTLP metrics export
"""
