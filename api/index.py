"""
Serverless entry point for the ScaleMap Triage API
"""
import os

# Serverless deployments default to production settings
os.environ.setdefault("ENVIRONMENT", "production")

from mangum import Mangum

from scalemap.main import app

# Lambda handler for the ASGI app; lifespan wires the triage service on cold start
handler = Mangum(app, lifespan="auto")
