"""
Rules engine package.

Defines the criteria model and evaluation engine used by the Eligibility
Service. Rules are organized into groups with configurable combination
logic (ALL/ANY/MIN/MAJORITY/boolean expression). Evaluating a criteria
returns a deterministic pass/fail decision, a score and a per-rule trace
that explains the outcome.

Modules of interest:
- models: Data classes for Criteria, Groups, Rules and result models.
- comparator: Operator semantics comparing runtime values with expectations.
- evaluator: Field resolution, dependency gate and single-rule evaluation.
- expression: Recursive-descent interpreter for boolean combinations.
- groups: Group evaluation, shared combinator and legacy rule clustering.
- scoring: Scoring strategies and decision labeling.
- engine: Criteria orchestration and execution plans.

The engine is pure and synchronous; criteria and subjects are resolved by
the caller before evaluation.
"""
