"""Bot profile model and loader exports."""

from .loader import ProfileLoadError, ProfileLoader, split_frontmatter
from .models import DEFAULT_INSTRUCTIONS, BotProfile

__all__ = [
    "BotProfile",
    "DEFAULT_INSTRUCTIONS",
    "ProfileLoadError",
    "ProfileLoader",
    "split_frontmatter",
]
