"""
AI service orchestration layer.

Provider-agnostic completions with response caching, per-user quotas and
token/cost accounting.
"""
