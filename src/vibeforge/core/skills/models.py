"""
Skill models.

A skill is a block of instructions injected into the agent prompt. Skills
with triggers only apply when one of the trigger keywords appears in the
user's request.
"""

from enum import Enum

from pydantic import BaseModel, Field


class SkillSource(str, Enum):
    """Where a skill comes from."""

    PLATFORM = "platform"
    TECH = "tech"
    ORGANIZATION = "organization"
    REPOSITORY = "repository"


class Skill(BaseModel):
    """Instruction block for the agent prompt."""

    name: str = Field(description="Display name")
    slug: str = Field(description="Stable identifier")
    description: str = ""
    content: str = Field(description="Markdown instructions for the agent")
    triggers: list[str] = Field(
        default_factory=list,
        description="Keywords that activate the skill (empty: always active)",
    )
    source: SkillSource = SkillSource.PLATFORM

    def matches(self, request: str) -> bool:
        """
        Check whether the skill applies to a request.

        Args:
            request: The user's request text

        Returns:
            True if the skill has no triggers or any trigger appears in the
            request (case-insensitive)
        """
        if not self.triggers:
            return True
        text = request.lower()
        return any(trigger.lower() in text for trigger in self.triggers)
