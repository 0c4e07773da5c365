"""Business logic services."""

from .assets import AssetLifecycleManager
from .composite import CompositeService
from .fallback import FallbackChainResolver, FallbackContext
from .generation import GenerationService, create_generation_client
from .prompts import PromptService, PromptSet
from .review import ReviewService

__all__ = [
    "AssetLifecycleManager",
    "CompositeService",
    "FallbackChainResolver",
    "FallbackContext",
    "GenerationService",
    "PromptService",
    "PromptSet",
    "ReviewService",
    "create_generation_client",
]
