"""Configuration settings for nlpeval."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class EvaluatorConfig:
    """
    Configuration for a model and the evaluator sessions it creates.

    Attributes:
        simplify: Run the simplifier (flattening, constant folding, neutral
                  element removal) on every expression before it is built.
        cache_last_point: Reuse values and derivatives when consecutive
                          queries share the identical point.
        share_subexpressions: Intern interior graph nodes so identical
                              sub-trees are stored and evaluated once.
    """
    simplify: bool = False
    cache_last_point: bool = True
    share_subexpressions: bool = True

    @classmethod
    def default(cls) -> EvaluatorConfig:
        """Sharing and caching on, no simplification."""
        return cls()

    @classmethod
    def simplified(cls) -> EvaluatorConfig:
        """Default configuration plus the simplifier."""
        return cls(simplify=True)

    @classmethod
    def uncached(cls) -> EvaluatorConfig:
        """Recompute every query from scratch, without node sharing."""
        return cls(cache_last_point=False, share_subexpressions=False)
