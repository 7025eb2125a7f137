"""Built-in skill catalogue."""

from .models import Skill, SkillSource

PLATFORM_SKILLS: list[Skill] = [
    Skill(
        name="UI Components",
        slug="ui-components",
        description="Guidelines for creating and modifying UI components",
        content="""When creating or modifying UI elements:
- Use existing component patterns from the project
- Ensure accessibility (proper labels, keyboard navigation, ARIA attributes)
- Keep styling consistent with the existing design system
- Test on mobile and desktop viewport sizes
- Prefer composition over inheritance for component structure""",
        triggers=["button", "form", "modal", "dialog", "input", "select", "card", "component", "ui"],
    ),
    Skill(
        name="API Integration",
        slug="api-integration",
        description="Guidelines for API calls and data fetching",
        content="""When working with APIs and data:
- Handle loading, error, and empty states gracefully
- Use existing patterns for data fetching in the project
- Add appropriate error messages for users in plain language
- Consider caching and optimistic updates where appropriate
- Never expose sensitive data or API keys in client-side code""",
        triggers=["api", "fetch", "data", "endpoint", "request", "response", "query"],
    ),
    Skill(
        name="Form Handling",
        slug="forms",
        description="Guidelines for form creation and validation",
        content="""When creating or modifying forms:
- Validate inputs before submission
- Show clear error messages next to the relevant field
- Disable submit button while processing
- Provide confirmation on successful submission
- Support keyboard navigation (Tab, Enter, Escape)""",
        triggers=["form", "input", "validation", "submit", "field", "checkbox", "radio"],
    ),
    Skill(
        name="Navigation & Routing",
        slug="navigation",
        description="Guidelines for page navigation and routing",
        content="""When working with navigation:
- Use the project's existing router patterns
- Ensure back button works as expected
- Preserve scroll position when appropriate
- Handle 404 and error states gracefully
- Use semantic navigation elements (nav, links)""",
        triggers=["navigation", "route", "link", "page", "redirect", "menu", "sidebar"],
    ),
    Skill(
        name="Styling & Design",
        slug="styling",
        description="Guidelines for visual styling and design consistency",
        content="""When applying styles:
- Follow the existing design system colors and spacing
- Use the project's CSS methodology (Tailwind, CSS modules, etc.)
- Ensure dark mode support if the project uses it
- Maintain responsive design across breakpoints
- Keep visual hierarchy clear and consistent""",
        triggers=["style", "css", "color", "theme", "dark mode", "responsive", "layout", "design"],
    ),
    Skill(
        name="Testing",
        slug="testing",
        description="Guidelines for adding tests",
        content="""When adding or modifying tests:
- Follow existing test patterns in the project
- Test user-facing behavior, not implementation details
- Include edge cases and error scenarios
- Keep tests focused and independent
- Use meaningful test descriptions""",
        triggers=["test", "testing", "spec", "jest", "vitest", "cypress", "playwright"],
    ),
]

TECH_SKILLS: dict[str, Skill] = {
    "react": Skill(
        name="React Patterns",
        slug="react",
        description="React-specific best practices",
        content="""React-specific guidelines:
- Use functional components with hooks
- Follow the existing state management pattern (useState, context, Zustand, etc.)
- Memoize expensive computations when needed
- Keep components focused on single responsibilities
- Use proper key props for lists""",
        triggers=["react", "component", "hook", "useState", "useEffect", "jsx"],
        source=SkillSource.TECH,
    ),
    "nextjs": Skill(
        name="Next.js Patterns",
        slug="nextjs",
        description="Next.js-specific best practices",
        content="""Next.js-specific guidelines:
- Use App Router conventions (layout.tsx, page.tsx, loading.tsx)
- Prefer Server Components for data fetching
- Use 'use client' directive only when necessary
- Handle metadata for SEO appropriately
- Use Next.js Image and Link components""",
        triggers=["next", "nextjs", "app router", "server component", "api route"],
        source=SkillSource.TECH,
    ),
    "tailwind": Skill(
        name="Tailwind CSS",
        slug="tailwind",
        description="Tailwind CSS patterns",
        content="""Tailwind CSS guidelines:
- Use utility classes consistently
- Follow mobile-first responsive design (sm:, md:, lg:)
- Use the cn() or clsx() utility for conditional classes
- Prefer Tailwind utilities over custom CSS
- Use CSS variables for theme customization""",
        triggers=["tailwind", "className", "utility class", "responsive"],
        source=SkillSource.TECH,
    ),
    "typescript": Skill(
        name="TypeScript",
        slug="typescript",
        description="TypeScript best practices",
        content="""TypeScript guidelines:
- Define proper types for all data structures
- Avoid 'any' type unless absolutely necessary
- Use type inference where it's clear
- Export types that are used across files
- Use discriminated unions for complex state""",
        triggers=["typescript", "type", "interface", "generic"],
        source=SkillSource.TECH,
    ),
}


def tech_skills_for(tech_stack: list[str]) -> list[Skill]:
    """
    Tech skills matching a repository's detected stack.

    A stack entry matches a catalogue key when either contains the other,
    so "Next.js 14" style entries still match after normalisation.
    """
    matched: list[Skill] = []
    for tech in tech_stack:
        lowered = tech.lower().replace(".", "").replace(" ", "")
        if not lowered:
            continue
        for key, skill in TECH_SKILLS.items():
            if (key in lowered or lowered in key) and skill not in matched:
                matched.append(skill)
    return matched
