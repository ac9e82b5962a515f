"""HTTP API for trackforge.

Structure:
- routers/: endpoints (generations, ingestions, maintenance, callbacks, health)
- schemas/: pydantic request/response models (camelCase on the wire)
- dependencies.py: app.state lookups and caller identity
- exception_handlers.py: domain exception to HTTP status mapping
"""
