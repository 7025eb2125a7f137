"""Prompt construction for the planning and building phases."""

from collections.abc import Sequence
from typing import Optional

from vibeforge.core.skills import Skill

from .models import Plan, RepoContext

PLAN_FORMAT = """```json
{
  "type": "plan",
  "summary": "One sentence describing the feature",
  "changes": [
    {"description": "User-visible change", "files": ["path/to/file"]}
  ],
  "considerations": "Anything the user should know before approving"
}
```"""


def _context_section(repo_context: RepoContext) -> str:
    lines = ["## Project Context", f"- **Name**: {repo_context.name}"]
    if repo_context.description:
        lines.append(f"- **Description**: {repo_context.description}")
    if repo_context.tech_stack:
        lines.append(f"- **Tech Stack**: {', '.join(repo_context.tech_stack)}")
    if repo_context.conventions:
        lines.append(f"- **Conventions**: {'; '.join(repo_context.conventions)}")
    if repo_context.key_files:
        files = ", ".join(f"{f.path} ({f.description})" for f in repo_context.key_files)
        lines.append(f"- **Key Files**: {files}")
    return "\n".join(lines)


def _skills_section(skills: Sequence[Skill]) -> str:
    blocks = "\n\n".join(f"### {skill.name}\n{skill.content}" for skill in skills)
    return f"## Skills/Guidelines to Follow\n{blocks}"


def _preview_section(preview_url: str) -> str:
    return (
        "## Live Preview\n"
        f"The user can see a live preview at: {preview_url}\n"
        "After making changes, remind them to check the preview."
    )


def build_plan_prompt(
    request: str,
    repo_context: Optional[RepoContext] = None,
    skills: Sequence[Skill] = (),
    preview_url: str = "",
) -> str:
    """
    Build the planning prompt.

    The prompt forbids making changes or showing code and asks for the
    plan as a JSON object in a fenced block.

    Args:
        request: The user's feature request
        repo_context: Repository description, if known
        skills: Skills that apply to the request
        preview_url: Live preview URL, if known

    Returns:
        Prompt text for the agent
    """
    sections: list[str] = []
    if repo_context is not None:
        sections.append(_context_section(repo_context))
    if skills:
        sections.append(_skills_section(skills))
    if preview_url:
        sections.append(_preview_section(preview_url))
    sections.append(f"## User Request\n{request}")
    sections.append(
        "Please analyze this request and create a plan. Remember:\n"
        "1. Do NOT make any changes yet - just create a plan\n"
        "2. Do NOT write or show any code\n"
        "3. Present the plan in plain language that non-technical users can understand\n"
        "4. Reply with the plan as a JSON object in exactly this format:\n"
        f"{PLAN_FORMAT}\n"
        "5. Wait for user approval before implementing"
    )
    return "\n\n".join(sections)


def build_execution_prompt(plan: Plan) -> str:
    """Build the prompt that asks the agent to implement an approved plan."""
    changes = []
    for i, change in enumerate(plan.changes, start=1):
        line = f"{i}. {change.description}"
        if change.files:
            line += f" (Files: {', '.join(change.files)})"
        changes.append(line)

    parts = [
        "The user has approved the following plan. Please implement it now.",
        "## Approved Plan",
        f"**Summary**: {plan.summary}",
        "**Changes to make**:\n" + "\n".join(changes),
    ]
    if plan.considerations:
        parts.append(f"**Considerations**: {plan.considerations}")
    parts.append(
        "## Instructions\n"
        "1. Implement each change in the plan\n"
        "2. Provide brief progress updates as you work\n"
        "3. Create or modify files as needed\n"
        "4. Run any necessary commands (npm install, etc.)\n"
        "5. Test that changes work correctly\n"
        "6. When done, summarize what was accomplished"
    )
    parts.append(
        "Remember: Focus on implementing what was approved. If you encounter "
        "issues, explain them simply and suggest solutions."
    )
    return "\n\n".join(parts)
