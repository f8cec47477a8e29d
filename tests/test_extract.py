"""Tests for command and suggestion extraction from response text."""

from ai_router.extract import extract_commands, extract_suggestions, looks_like_command


class TestExtractCommands:

    def test_fenced_block_and_inline(self) -> None:
        text = (
            "Your push was rejected.\n\n"
            "```bash\n$ git pull --rebase\ngit push\n```\n\n"
            "Then check `git status`."
        )
        assert extract_commands(text) == ["git pull --rebase", "git push", "git status"]

    def test_deduplicated_and_capped(self) -> None:
        text = "```sh\nls -la\nls -la\ncd src\nmake\nmake test\n```"
        assert extract_commands(text) == ["ls -la", "cd src", "make"]

    def test_non_shell_fence_is_ignored(self) -> None:
        assert extract_commands("```python\nimport os\n```") == []

    def test_inline_prose_is_not_a_command(self) -> None:
        text = "Edit `config.py` or read `example.com`, then use `--dry-run` first."
        assert extract_commands(text) == ["--dry-run"]

    def test_heuristic(self) -> None:
        assert looks_like_command("kubectl get pods") is True
        assert looks_like_command("Docker compose up") is True
        assert looks_like_command("hello world") is False
        assert looks_like_command("") is False


class TestExtractSuggestions:

    def test_lists_and_markers(self) -> None:
        text = (
            "Here are options:\n"
            "1. Check the remote\n"
            "2. Rebase first\n"
            "   - Use a new branch\n"
            "Try: git fetch\n"
            "Python 3.11 is required\n"
            "Nothing else here"
        )
        assert extract_suggestions(text) == [
            "1. Check the remote",
            "2. Rebase first",
            "- Use a new branch",
            "Try: git fetch",
        ]

    def test_capped(self) -> None:
        text = "\n".join(f"- option {i}" for i in range(7))
        assert extract_suggestions(text) == [f"- option {i}" for i in range(5)]

    def test_plain_text(self) -> None:
        assert extract_suggestions("All good.") == []
