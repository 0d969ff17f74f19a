"""
Core modules for the AI service.

This package contains the request/response types, cost accounting, the
response cache, quota management, usage aggregation and the orchestrator.
"""
