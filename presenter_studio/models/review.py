"""Review request/verdict models."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Correction:
    """Reviewer hint. Placement stages use the deltas, prompt stages the revised prompt."""
    dx: float = 0.0
    dy: float = 0.0
    scale_multiplier: float = 1.0
    revised_prompt: str | None = None


@dataclass(frozen=True)
class ReviewVerdict:
    """Outcome of one review round."""
    accept: bool
    reason: str = ""
    correction: Correction | None = None
    unavailable: bool = False    # reviewer could not be consulted
    caveat: str | None = None    # set when accepted by policy rather than by the reviewer

    @classmethod
    def unreachable(cls, reason: str, correction: Correction | None = None) -> "ReviewVerdict":
        return cls(accept=False, reason=reason, correction=correction, unavailable=True)


@dataclass(frozen=True)
class ReviewRequest:
    """What the reviewer sees for one attempt."""
    candidate_locator: str
    reference_locators: list[str] = field(default_factory=list)
    attempt: int = 1
    prompt_used: str = ""
