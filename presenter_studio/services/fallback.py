"""Fallback chain: degraded substitutes used once a stage's retry budget is spent."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from ..errors import FallbackExhausted, FallbackUnavailable, ServiceError
from ..models.asset import AssetKind, CandidateAsset
from .assets import AssetLifecycleManager

logger = logging.getLogger(__name__)


@dataclass
class FallbackContext:
    """What a strategy may draw on."""
    job_id: str
    stage: str
    assets: AssetLifecycleManager
    input_asset: CandidateAsset | None = None    # untouched input for this stage
    raw_path: Path | None = None                 # user-provided file, unmodified
    prior_asset: CandidateAsset | None = None    # previous stage's output
    generate: Callable[[], CandidateAsset] | None = None


FallbackStrategy = Callable[[FallbackContext], CandidateAsset]

_STRATEGIES: dict[str, FallbackStrategy] = {}


def register(name: str):
    """Decorator to register a fallback strategy."""
    def decorator(fn):
        _STRATEGIES[name] = fn
        return fn
    return decorator


def get_strategy(name: str) -> FallbackStrategy:
    if name not in _STRATEGIES:
        raise ValueError(f"Unknown fallback strategy: {name}")
    return _STRATEGIES[name]


def list_strategies() -> list[str]:
    return list(_STRATEGIES.keys())


@register("reuse_input")
def reuse_input(ctx: FallbackContext) -> CandidateAsset:
    """The stage's original, unmodified input."""
    if ctx.input_asset is None:
        raise FallbackUnavailable("no input asset to reuse")
    return ctx.input_asset


@register("upload_raw")
def upload_raw(ctx: FallbackContext) -> CandidateAsset:
    """Host the user-provided file without any generative modification."""
    if ctx.raw_path is None:
        raise FallbackUnavailable("no raw file provided")
    return ctx.assets.register(ctx.raw_path, ctx.stage, kind=AssetKind.FALLBACK)


@register("omit_overlay")
def omit_overlay(ctx: FallbackContext) -> CandidateAsset:
    """Previous stage's asset with the optional element left out."""
    if ctx.prior_asset is None:
        raise FallbackUnavailable("no prior stage asset")
    return ctx.prior_asset


@register("generative_composite")
def generative_composite(ctx: FallbackContext) -> CandidateAsset:
    """Let the generator place the element (may alter the scene)."""
    if ctx.generate is None:
        raise FallbackUnavailable("generative composite not available")
    return ctx.generate()


class FallbackChainResolver:
    """Per-stage ordered strategy table."""

    def __init__(self, table: dict[str, tuple[str, ...]]):
        for names in table.values():
            for name in names:
                get_strategy(name)  # fail fast on typos
        self.table = table

    @classmethod
    def default(cls, enable_generative_composite: bool = False) -> "FallbackChainResolver":
        composite = ("omit_overlay",)
        if enable_generative_composite:
            composite = ("generative_composite",) + composite
        return cls({
            "wardrobe": ("reuse_input",),
            "object": ("upload_raw",),
            "composite": composite,
        })

    def chain(self, stage: str) -> tuple[str, ...]:
        return self.table.get(stage, ())

    def resolve(self, ctx: FallbackContext) -> tuple[CandidateAsset, str]:
        """Try each strategy in order; return (asset, strategy name).

        Raises:
            FallbackExhausted: If the chain is empty or every strategy failed.
        """
        errors = []
        for name in self.chain(ctx.stage):
            try:
                asset = get_strategy(name)(ctx)
            except (FallbackUnavailable, ServiceError, OSError) as e:
                logger.warning(f"[{ctx.job_id}] {ctx.stage} fallback {name} failed: {e}")
                errors.append(f"{name}: {e}")
                continue
            logger.info(f"[{ctx.job_id}] {ctx.stage} using fallback {name}")
            return asset, name

        raise FallbackExhausted(
            f"{ctx.stage}: no usable fallback ({'; '.join(errors) or 'empty chain'})"
        )
