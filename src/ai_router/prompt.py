"""ai-router: Fold request context into the prompt sent to providers."""

from __future__ import annotations

from ai_router.models import AIRequest

_MAX_RECENT_COMMANDS = 5
_MAX_OUTPUT_CHARS = 500


def build_enhanced_prompt(request: AIRequest) -> str:
    """Return the prompt with terminal context appended.

    Empty context fields are omitted, so a request without context
    yields the bare prompt.
    """
    ctx = request.context
    lines = [request.prompt]

    context_lines: list[str] = []
    if ctx.shell:
        context_lines.append(f"Shell: {ctx.shell}")
    if ctx.command:
        context_lines.append(f"Command: {ctx.command}")
    if ctx.working_directory:
        context_lines.append(f"Working Directory: {ctx.working_directory}")
    if ctx.git and ctx.git.branch:
        dirty = " (uncommitted changes)" if ctx.git.has_changes else ""
        context_lines.append(f"Git Branch: {ctx.git.branch}{dirty}")
    if ctx.project and ctx.project.type:
        context_lines.append(f"Project Type: {ctx.project.type}")
    if ctx.recent_commands:
        recent = ", ".join(ctx.recent_commands[-_MAX_RECENT_COMMANDS:])
        context_lines.append(f"Recent Commands: {recent}")
    if ctx.last_output:
        context_lines.append(f"Last Output: {ctx.last_output[:_MAX_OUTPUT_CHARS]}")

    if context_lines:
        lines.append("")
        lines.append("Context:")
        lines.extend(context_lines)
    return "\n".join(lines)
