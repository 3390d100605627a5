"""Mapping of raw listing skills onto the expertise categories users pick."""

from typing import Dict, Iterable, List, Mapping, Set, Tuple, Union

SKILL_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "DEVELOPMENT": ("FRONTEND", "BACKEND", "BLOCKCHAIN", "MOBILE"),
    "DESIGN": ("DESIGN", "UI/UX", "GRAPHIC", "GAME"),
    "CONTENT": ("CONTENT", "RESEARCH", "SOCIAL"),
    "GROWTH": ("GROWTH", "BUSINESS_DEVELOPMENT", "MARKETING"),
    "COMMUNITY": ("COMMUNITY", "COMMUNITY_MANAGER", "SOCIAL_MODERATOR"),
}

SkillGroup = Mapping[str, Union[str, List[str]]]


def flatten_skills(skill_groups: Iterable[SkillGroup]) -> List[str]:
    """Flatten ``[{"skills": "Frontend", "subskills": ["React"]}, ...]``.

    Values are upper-cased and stripped; blanks are dropped.
    """
    flattened = []
    for group in skill_groups or ():
        values = [group.get("skills") or ""]
        values.extend(group.get("subskills") or ())
        for value in values:
            if not isinstance(value, str):
                continue
            cleaned = value.strip().upper()
            if cleaned:
                flattened.append(cleaned)
    return flattened


def map_skills_to_categories(
    skill_groups: Iterable[SkillGroup],
    categories: Mapping[str, Iterable[str]] = SKILL_CATEGORIES,
) -> Set[str]:
    """Return the categories any listing skill falls into.

    A listing skill belongs to a category when it contains one of the
    category keywords, or is contained in one (``"UI/UX DESIGN"`` -> DESIGN,
    ``"BACKEND"`` -> DEVELOPMENT).

    Example:
        >>> sorted(map_skills_to_categories([{"skills": "Frontend", "subskills": ["Research"]}]))
        ['CONTENT', 'DEVELOPMENT']
    """
    listing_skills = flatten_skills(skill_groups)
    mapped = set()

    for category, keywords in categories.items():
        for keyword in keywords:
            keyword = keyword.upper()
            if any(keyword in skill or skill in keyword for skill in listing_skills):
                mapped.add(category)
                break

    return mapped
