"""
Agent skills.

Reusable instruction blocks injected into agent prompts when their trigger
keywords match the user's request.
"""

from .catalog import PLATFORM_SKILLS, TECH_SKILLS, tech_skills_for
from .loader import filter_by_request, load_skills
from .models import Skill, SkillSource

__all__ = [
    "PLATFORM_SKILLS",
    "TECH_SKILLS",
    "Skill",
    "SkillSource",
    "filter_by_request",
    "load_skills",
    "tech_skills_for",
]
