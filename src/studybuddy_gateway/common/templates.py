"""Prompt templating helpers."""
from __future__ import annotations
from functools import lru_cache
from pathlib import Path

DEFAULT_TEMPLATE = Path(__file__).with_name("prompt_template.txt")

@lru_cache(maxsize=None)
def load_template(path: str | Path = DEFAULT_TEMPLATE) -> str:
    """
    Load a prompt template file.

    Args:
        path: Path to template. Defaults to the packaged Study Buddy prompt.
    """
    return Path(path).read_text(encoding="utf-8")

def render_prompt(template: str, user_input: str) -> str:
    """
    Render user input into the template.

    Surrounding whitespace of the template is dropped; the user input is
    inserted unchanged.

    Args:
        template: Template content containing {{input}}.
        user_input: Input string.

    Returns:
        Rendered prompt.
    """
    return template.strip().replace("{{input}}", user_input)
