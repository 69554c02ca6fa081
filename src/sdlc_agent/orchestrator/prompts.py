"""Instruction text handed to the code-generation tool."""

from __future__ import annotations

from sdlc_agent.orchestrator.models import ProjectConfig, RepositoryAnalysis, WorkRequest

IMPLEMENTATION_GUIDELINES: tuple[str, ...] = (
    "Follow the existing code patterns and architecture detected in the repository",
    "Maintain consistency with the project's coding style and conventions",
    "Add appropriate error handling and logging",
    "Ensure the changes integrate seamlessly with existing code",
    "Write clean, maintainable, and well-documented code",
    "Add unit tests if applicable",
)


def build_instruction(
    request: WorkRequest,
    project: ProjectConfig,
    analysis: RepositoryAnalysis,
) -> str:
    """Render the markdown task description for one work request."""

    lines = [f"# Development Task: {request.jira_issue_key}", ""]
    lines += ["## Summary", request.summary, ""]
    if request.description:
        lines += ["## Description", request.description, ""]

    lines += ["## Project Context", ""]
    lines.append(f"**Project**: {project.name}")
    lines.append(f"**Project Type**: {analysis.project_type}")
    if analysis.languages:
        lines.append(f"**Languages**: {', '.join(analysis.languages)}")
    if analysis.dependency_managers:
        lines.append(f"**Dependency Managers**: {', '.join(analysis.dependency_managers)}")
    if project.scope:
        lines.append(f"**Project Scope**: {project.scope}")
    lines.append("")

    lines += ["## Repository Structure", ""]
    _append_list(lines, "Entry Points", analysis.entry_points)
    _append_list(lines, "Key Directories", analysis.key_directories)
    _append_list(
        lines,
        "Detected Patterns",
        [f"{key}: {value}" for key, value in sorted(analysis.patterns.items())],
    )

    lines += [
        "## Instructions",
        "",
        "Please implement the requested changes following these guidelines:",
        "",
    ]
    lines += [f"{index}. {text}" for index, text in enumerate(IMPLEMENTATION_GUIDELINES, start=1)]
    lines += ["", "Please implement the changes and provide a summary of what was modified."]
    return "\n".join(lines) + "\n"


def _append_list(lines: list[str], title: str, items: list[str]) -> None:
    if not items:
        return
    lines.append(f"**{title}**:")
    lines += [f"- {item}" for item in items]
    lines.append("")
