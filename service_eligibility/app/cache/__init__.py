"""
Cache package for the Eligibility Service.

Provides the backend contract used by the evaluation facade, an in-memory
backend with tag support, and a Redis-backed backend that stores serialized
evaluation results with TTLs and tag sets for criteria-level invalidation.
"""
