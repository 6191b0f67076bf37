"""
Eligibility Service package.

This package decides whether a subject record satisfies a criteria made of
weighted rules and rule groups. It provides:

- app.rules: Criteria model, evaluation engine, scoring and decision labels.
- app.cache: Cache backends (in-memory and Redis) for evaluation results.
- app.service: Evaluation facade with caching, batch evaluation and warm-up.

Guidelines:
- Evaluation is pure; all I/O lives in the cache layer and the facade.
- Keep evaluations deterministic so identical inputs share a cache key.
- Failing business conditions never raise; they produce a structured result.
"""
