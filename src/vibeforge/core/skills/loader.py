"""
Skill loading.

Collects the skills that apply to a request, in priority order:

1. Platform skills (always loaded)
2. Tech skills matching the repository's detected stack
3. Active organisation skills
4. Active repository skills

then keeps only the skills whose triggers match the request.
"""

import logging
from typing import Optional

from vibeforge.core.store.models import Repository, SkillRecord
from vibeforge.core.store.protocol import RecordStore

from .catalog import PLATFORM_SKILLS, tech_skills_for
from .models import Skill, SkillSource

logger = logging.getLogger(__name__)


def filter_by_request(skills: list[Skill], request: Optional[str]) -> list[Skill]:
    """
    Keep the skills that apply to a request.

    Without a request every skill is kept.
    """
    if not request:
        return list(skills)
    return [skill for skill in skills if skill.matches(request)]


def _from_record(record: SkillRecord, source: SkillSource) -> Skill:
    return Skill(
        name=record.name,
        slug=record.slug or record.id,
        description=record.description,
        content=record.content,
        triggers=record.triggers,
        source=source,
    )


async def load_skills(
    store: RecordStore,
    repository_id: str,
    request: Optional[str] = None,
) -> list[Skill]:
    """
    Load the skills for a repository, filtered by the request.

    Args:
        store: Record store holding repositories and skill records
        repository_id: Repository the session works on
        request: User request used for trigger matching

    Returns:
        Applicable skills; platform skills only if the repository is unknown
    """
    skills: list[Skill] = list(PLATFORM_SKILLS)

    repository = await store.get(Repository, repository_id)
    if repository is None:
        logger.debug("Repository %s not found; using platform skills only", repository_id)
        return filter_by_request(skills, request)

    if repository.context is not None:
        skills.extend(tech_skills_for(repository.context.tech_stack))

    if repository.organization_id:
        for record in await store.find(
            SkillRecord, organization_id=repository.organization_id, repository_id=None, is_active=True
        ):
            skills.append(_from_record(record, SkillSource.ORGANIZATION))

    for record in await store.find(SkillRecord, repository_id=repository_id, is_active=True):
        skills.append(_from_record(record, SkillSource.REPOSITORY))

    return filter_by_request(skills, request)
