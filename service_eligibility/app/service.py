"""
Evaluation facade for the Eligibility Service.

Wraps the rule engine with a memoization layer keyed by criteria identity and
a canonical hash of the subject data, plus batch evaluation, cache warm-up,
invalidation and statistics.
"""

import asyncio
import hashlib
import json
import re
from datetime import date, time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from shared.config import EligibilityConfig, resolve_config
from shared.errors import (
    CacheBackendError, ConfigurationError, CriteriaNotFoundError, EligibilityException, ValidationError
)
from shared.logging import clear_context, configure_logging, get_logger, set_criteria_context, set_evaluation_id
from shared.metrics import MetricsCollector
from .cache.backends import CacheBackend, InMemoryCache
from .cache.redis_cache import RedisCache
from .rules.engine import RuleEngine
from .rules.models import BatchEvaluationResult, BatchItemResult, Criteria, EvaluationResult

EVALUATIONS_TAG = "evaluations"

_SUSPICIOUS_PATTERNS = [
    re.compile(r"<\s*script", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"\bunion\b.+\bselect\b", re.IGNORECASE),
    re.compile(r";\s*drop\s+table", re.IGNORECASE),
    re.compile(r"\.\./"),
]


def _typed_value(value: Any) -> Dict[str, str]:
    # Non-JSON values are tagged with their type name
    if isinstance(value, (date, time)):
        return {"__type__": type(value).__name__, "value": value.isoformat()}
    return {"__type__": type(value).__name__, "value": repr(value)}


def canonical_json(subject: Mapping[str, Any]) -> str:
    """Key-order independent JSON rendering of a subject."""
    return json.dumps(subject, sort_keys=True, separators=(",", ":"), default=_typed_value)


def subject_hash(subject: Mapping[str, Any]) -> str:
    """MD5 of the canonical subject JSON."""
    return hashlib.md5(canonical_json(subject).encode()).hexdigest()


def criteria_tag(criteria_id: str) -> str:
    """Cache tag shared by every evaluation of one criteria."""
    return f"criteria:{criteria_id}"


class EligibilityService:
    """Cached evaluation API over the rule engine."""

    def __init__(
        self,
        cache: Optional[CacheBackend] = None,
        engine: Optional[RuleEngine] = None,
        config: Optional[EligibilityConfig] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.logger = get_logger("eligibility.service")
        self.config = resolve_config(config)
        self.cache = cache if cache is not None else InMemoryCache()
        self.engine = engine or RuleEngine(self.config)
        self.metrics = metrics or MetricsCollector("eligibility")
        self._locks: Dict[str, asyncio.Lock] = {}
        self._hits = 0
        self._misses = 0

    async def start(self):
        """Start the cache backend."""
        await self.cache.start()
        self.logger.info("Eligibility service started", cache_backend=type(self.cache).__name__)

    async def stop(self):
        """Stop the cache backend."""
        await self.cache.stop()
        self.logger.info("Eligibility service stopped")

    def cache_key(self, criteria: Criteria, subject: Mapping[str, Any]) -> str:
        """Cache key for one (criteria, subject) pair."""
        return f"{self.config.cache_prefix}:{criteria.criteria_id}:{subject_hash(subject)}"

    def validate_subject(self, subject: Any) -> None:
        """
        Reject subjects that are not mappings or exceed configured size limits.

        Injection-shaped string values are logged but still evaluated.
        """
        if not isinstance(subject, Mapping):
            raise ValidationError("Subject must be a mapping", {"type": type(subject).__name__})

        for key, value in subject.items():
            if len(str(key)) > self.config.max_field_length:
                raise ValidationError(
                    "Subject field name too long",
                    {"field": str(key)[:50], "max_length": self.config.max_field_length}
                )
            if isinstance(value, str):
                if len(value) > self.config.max_value_length:
                    raise ValidationError(
                        "Subject value too long",
                        {"field": str(key), "max_length": self.config.max_value_length}
                    )
                if any(pattern.search(value) for pattern in _SUSPICIOUS_PATTERNS):
                    self.logger.warning("Suspicious subject value", field=str(key))

    async def evaluate(
        self,
        criteria: Optional[Criteria],
        subject: Mapping[str, Any],
        use_cache: Optional[bool] = None
    ) -> EvaluationResult:
        """
        Evaluate a criteria against a subject, serving from cache when possible.

        Raises CriteriaNotFoundError for a missing criteria, ValidationError for
        rejected input and CacheBackendError when the cache is unreachable.
        """
        if criteria is None:
            self.metrics.record_error("CRITERIA_NOT_FOUND")
            raise CriteriaNotFoundError("No criteria supplied for evaluation")

        set_evaluation_id()
        set_criteria_context(criteria.criteria_id)
        try:
            if self.config.validate_input:
                self.validate_subject(subject)

            if use_cache is None:
                use_cache = self.config.evaluation_cache_enabled

            if not use_cache:
                result = self._compute(criteria, subject)
                self._log_result(result, cache_hit=False)
                return result

            key = self.cache_key(criteria, subject)
            cached = await self._get_cached(key)
            if cached is not None:
                self._log_result(cached, cache_hit=True)
                return cached

            lock = self._locks.setdefault(key, asyncio.Lock())
            try:
                async with lock:
                    cached = await self._get_cached(key, count_miss=False)
                    if cached is not None:
                        self._log_result(cached, cache_hit=True)
                        return cached

                    result = self._compute(criteria, subject)
                    await self.cache.put(
                        key,
                        result.model_dump_json(),
                        self.config.evaluation_cache_ttl,
                        tags=(criteria_tag(criteria.criteria_id), EVALUATIONS_TAG)
                    )
            finally:
                if not lock.locked() and self._locks.get(key) is lock:
                    self._locks.pop(key, None)

            self._log_result(result, cache_hit=False)
            return result

        except EligibilityException as e:
            self.metrics.record_error(e.code)
            if isinstance(e, CacheBackendError):
                self.logger.error("Cache backend failure", error=e.message)
            raise
        finally:
            clear_context()

    async def evaluate_batch(
        self,
        criteria: Optional[Criteria],
        subjects: Sequence[Mapping[str, Any]],
        use_cache: bool = False
    ) -> BatchEvaluationResult:
        """
        Evaluate many subjects against one criteria.

        Subjects are processed in chunks of ``batch_size``; each chunk runs on
        worker threads bounded by ``batch_concurrency``. A failing subject yields
        an error entry instead of aborting the batch.
        """
        if criteria is None:
            raise CriteriaNotFoundError("No criteria supplied for batch evaluation")

        semaphore = asyncio.Semaphore(self.config.batch_concurrency)
        items: List[BatchItemResult] = []

        for start in range(0, len(subjects), self.config.batch_size):
            chunk = subjects[start:start + self.config.batch_size]
            items.extend(await asyncio.gather(*(
                self._evaluate_item(criteria, start + offset, subject, use_cache, semaphore)
                for offset, subject in enumerate(chunk)
            )))

        total_passed = sum(1 for item in items if item.passed)
        batch = BatchEvaluationResult(
            criteria_id=criteria.criteria_id,
            total_evaluated=len(items),
            total_passed=total_passed,
            total_failed=len(items) - total_passed,
            results=items
        )

        self.logger.info(
            "Batch evaluation completed",
            criteria_id=criteria.criteria_id,
            total=batch.total_evaluated,
            passed=batch.total_passed,
            errors=sum(1 for item in items if item.error)
        )
        self.metrics.record_business_event("batch_evaluation")
        return batch

    async def warmup(self, criteria: Optional[Criteria], subjects: Sequence[Mapping[str, Any]]) -> int:
        """Evaluate and cache each subject. Returns how many were warmed."""
        if criteria is None:
            raise CriteriaNotFoundError("No criteria supplied for cache warm-up")

        semaphore = asyncio.Semaphore(self.config.batch_concurrency)

        async def warm(subject: Mapping[str, Any]) -> bool:
            async with semaphore:
                try:
                    await self.evaluate(criteria, subject, use_cache=True)
                    return True
                except EligibilityException as e:
                    self.logger.warning("Cache warm-up failed", criteria_id=criteria.criteria_id, error=e.message)
                    return False

        outcomes = await asyncio.gather(*(warm(subject) for subject in subjects))
        warmed = sum(1 for outcome in outcomes if outcome)

        self.logger.info("Cache warmed", criteria_id=criteria.criteria_id, warmed=warmed, total=len(subjects))
        return warmed

    async def is_cached(self, criteria: Criteria, subject: Mapping[str, Any]) -> bool:
        """Whether an evaluation for this subject is currently cached."""
        return await self.cache.exists(self.cache_key(criteria, subject))

    async def invalidate_evaluation(self, criteria: Criteria, subject: Mapping[str, Any]) -> bool:
        """Drop the cached evaluation of one subject."""
        removed = await self.cache.delete(self.cache_key(criteria, subject))
        self.metrics.increment_counter("cache_invalidations_total", mode="key")
        return removed

    async def invalidate(self, criteria: Union[Criteria, str]) -> int:
        """
        Drop every cached evaluation of a criteria.

        Backends without tag support fall back to flushing the whole namespace.
        """
        criteria_id = criteria.criteria_id if isinstance(criteria, Criteria) else str(criteria)

        if self.cache.supports_tags:
            removed = await self.cache.invalidate_tag(criteria_tag(criteria_id))
            mode = "tag"
        else:
            removed = await self.cache.flush_namespace()
            mode = "flush"

        self.metrics.increment_counter("cache_invalidations_total", mode=mode)
        self.logger.info("Criteria cache invalidated", criteria_id=criteria_id, mode=mode, count=removed)
        return removed

    async def flush(self) -> int:
        """Drop every cached evaluation."""
        removed = await self.cache.flush_namespace()
        self.metrics.increment_counter("cache_invalidations_total", mode="flush")
        self.logger.info("Evaluation cache flushed", count=removed)
        return removed

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Hit/miss counters of this facade plus backend statistics."""
        return {
            "enabled": self.config.evaluation_cache_enabled,
            "ttl": self.config.evaluation_cache_ttl,
            "prefix": self.config.cache_prefix,
            "hits": self._hits,
            "misses": self._misses,
            "hit_ratio": self._hit_ratio(),
            "backend": await self.cache.stats(),
        }

    def _compute(self, criteria: Criteria, subject: Mapping[str, Any]) -> EvaluationResult:
        with self.metrics.time_operation("evaluation_duration_seconds"):
            result = self.engine.evaluate(criteria, subject)
        self.metrics.increment_counter("evaluations_total", passed=str(result.passed).lower())
        return result

    async def _get_cached(self, key: str, count_miss: bool = True) -> Optional[EvaluationResult]:
        cached = await self.cache.get(key)
        if cached is not None:
            try:
                result = EvaluationResult.model_validate_json(cached)
            except PydanticValidationError as e:
                self.logger.warning("Discarding unreadable cached evaluation", cache_key=key, error=str(e))
                await self.cache.delete(key)
            else:
                self._hits += 1
                self.metrics.increment_counter("cache_hits_total", cache_type="evaluation")
                self.metrics.set_gauge("cache_hit_ratio", self._hit_ratio())
                return result

        if count_miss:
            self._misses += 1
            self.metrics.increment_counter("cache_misses_total", cache_type="evaluation")
            self.metrics.set_gauge("cache_hit_ratio", self._hit_ratio())
        return None

    async def _evaluate_item(
        self,
        criteria: Criteria,
        index: int,
        subject: Mapping[str, Any],
        use_cache: bool,
        semaphore: asyncio.Semaphore
    ) -> BatchItemResult:
        async with semaphore:
            try:
                digest = subject_hash(subject)
            except (TypeError, ValueError) as e:
                digest = ""
                self.logger.warning("Unhashable batch subject", index=index, error=str(e))

            try:
                if use_cache:
                    result = await self.evaluate(criteria, subject, use_cache=True)
                else:
                    if self.config.validate_input:
                        self.validate_subject(subject)
                    result = await asyncio.to_thread(self._compute, criteria, subject)
            except Exception as e:
                self.logger.warning("Batch item evaluation failed", index=index, error=str(e))
                self.metrics.record_error("BATCH_ITEM_FAILED")
                return BatchItemResult(index=index, subject_hash=digest, passed=False, score=0.0, error=str(e))

            return BatchItemResult(
                index=index,
                subject_hash=digest,
                passed=result.passed,
                score=result.score,
                decision=result.decision,
                result=result
            )

    def _hit_ratio(self) -> float:
        total = self._hits + self._misses
        return round(self._hits / total, 4) if total else 0.0

    def _log_result(self, result: EvaluationResult, cache_hit: bool) -> None:
        self.logger.info(
            "Evaluation completed",
            criteria_id=result.criteria_id,
            passed=result.passed,
            score=result.score,
            decision=result.decision,
            cache_hit=cache_hit
        )


def create_service(config: Optional[EligibilityConfig] = None) -> EligibilityService:
    """Create an evaluation service from settings, configuring logging on the way."""
    config = resolve_config(config)
    configure_logging("eligibility", config.log_level)

    if config.cache_backend == "redis":
        cache: CacheBackend = RedisCache(config.redis_url)
    elif config.cache_backend == "memory":
        cache = InMemoryCache()
    else:
        raise ConfigurationError(
            f"Unknown cache backend: {config.cache_backend}",
            {"cache_backend": config.cache_backend}
        )

    return EligibilityService(cache=cache, config=config)
