"""Skill matching between users and listings."""

from .engine import MatchEngine
from .models import MatchRunStats
from .skills import SKILL_CATEGORIES, flatten_skills, map_skills_to_categories

__all__ = [
    "MatchEngine",
    "MatchRunStats",
    "SKILL_CATEGORIES",
    "flatten_skills",
    "map_skills_to_categories",
]
