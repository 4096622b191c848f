"""Prompt assembly for the per-bead coding agent."""

from pathlib import Path

from .models import Bead


EXECUTOR_SYSTEM_PROMPT = """You are an implementation agent working on one bead of an approved plan.

Your job is to:
1. Read the bead description carefully
2. Make the smallest complete change that delivers it
3. Keep the project building, linting and passing its tests
4. Stay inside the listed files unless the change genuinely needs more

Work methodically:
- First read any existing files you need to modify
- Plan your implementation
- Write/modify files as needed
- Run the verification commands yourself before finishing

Do not commit. The orchestrator verifies and commits your work."""


def read_system_prompt(project_root: str) -> str:
    """Project override from .berth/CLAUDE.md, else the built-in prompt."""
    override = Path(project_root) / ".berth" / "CLAUDE.md"
    if override.is_file():
        text = override.read_text().strip()
        if text:
            return text
    return EXECUTOR_SYSTEM_PROMPT


def build_task_prompt(
    bead: Bead,
    completed_deps: list[Bead] | None = None,
    verify_commands: list[str] | None = None,
) -> str:
    """Format a bead into the task prompt handed to the agent.

    Args:
        bead: The bead to implement.
        completed_deps: Dependencies that already finished, for context.
        verify_commands: The full verification pipeline this bead must pass.

    Returns:
        Formatted prompt string.
    """
    prompt_parts = [
        f"# Bead {bead.id}: {bead.title}",
        "",
        "## Description",
        bead.description or "(no description)",
    ]

    if bead.files:
        prompt_parts.extend(["", "## Files to Create/Modify"])
        for file_path in bead.files:
            prompt_parts.append(f"- {file_path}")

    if completed_deps:
        prompt_parts.extend(["", "## Completed Dependencies"])
        for dep in completed_deps:
            prompt_parts.append(f"- {dep.id}: {dep.title}")

    if verify_commands:
        prompt_parts.extend([
            "",
            "## Verification",
            "Your change is accepted only if these commands all exit 0, in order:",
        ])
        for command in verify_commands:
            prompt_parts.append(f"- `{command}`")

    prompt_parts.extend([
        "",
        "Please implement this bead. Read any existing files first, then create or modify files as needed.",
    ])

    return "\n".join(prompt_parts)
