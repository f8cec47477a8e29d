"""ai-router: Pull shell commands and follow-up suggestions out of response text."""

from __future__ import annotations

import re

MAX_SUGGESTIONS = 5
MAX_COMMANDS = 3

_CODE_BLOCK_RE = re.compile(r"```(?:bash|sh|shell|zsh|fish)?\n(.*?)\n```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")
_NUMBERED_RE = re.compile(r"^[\d.]+\.\s")
_SUGGESTION_MARKERS = ("try:", "consider:", "alternatively:", "suggestion:")

COMMAND_PREFIXES = frozenset({
    "git", "npm", "yarn", "pnpm", "cd", "ls", "mkdir", "rm", "cp", "mv",
    "chmod", "chown", "curl", "wget", "ssh", "scp", "rsync", "find", "grep",
    "awk", "sed", "cat", "less", "head", "tail", "sort", "uniq", "wc",
    "ps", "top", "kill", "killall", "jobs", "nohup", "screen", "tmux",
    "docker", "kubectl", "helm", "terraform", "ansible", "make", "cmake",
})


def looks_like_command(text: str) -> bool:
    """Heuristic: a known CLI name first, or a short line carrying flags."""
    words = text.split()
    if not words:
        return False
    if words[0].lower() in COMMAND_PREFIXES:
        return True
    return len(text) < 100 and "-" in text and ".com" not in text


def extract_suggestions(text: str, limit: int = MAX_SUGGESTIONS) -> list[str]:
    """Numbered items, bullets and "try:"/"consider:" lines, in order."""
    suggestions: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        lowered = stripped.lower()
        if (
            _NUMBERED_RE.match(stripped)
            or stripped.startswith("- ")
            or any(marker in lowered for marker in _SUGGESTION_MARKERS)
        ):
            suggestions.append(stripped)
            if len(suggestions) == limit:
                break
    return suggestions


def extract_commands(text: str, limit: int = MAX_COMMANDS) -> list[str]:
    """Shell commands from fenced shell blocks, then from inline code.

    A leading ``$`` prompt is dropped and duplicates are removed, keeping
    first occurrence order.
    """
    commands: list[str] = []
    for block in _CODE_BLOCK_RE.findall(text):
        for line in block.splitlines():
            command = line.strip()
            if command.startswith("$"):
                command = command[1:].strip()
            if looks_like_command(command):
                commands.append(command)

    for snippet in _INLINE_CODE_RE.findall(text):
        command = snippet.strip()
        if looks_like_command(command):
            commands.append(command)

    return list(dict.fromkeys(commands))[:limit]
