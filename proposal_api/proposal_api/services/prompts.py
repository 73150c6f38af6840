"""Versioned prompt templates for proposal generation.

Each template is a frozen dataclass with a version string.  The version is
logged with every provider call so prompt changes can be traced in the
access logs.  Bump ``version`` whenever ``content`` changes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_PROMPT_INJECTION_PATTERNS = re.compile(
    r"<\|system\|>|<\|user\|>|<\|assistant\|>|"
    r"Human:|Assistant:|"
    r"\[INST\]|\[/INST\]|"
    r"<<SYS>>|<</SYS>>|"
    r"<\|im_start\|>|<\|im_end\|>",
    re.IGNORECASE,
)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")  # Keep \n, \t, \r
_MAX_FIELD_SIZE = 50 * 1024


def sanitize_prompt_input(value: str, field_name: str = "input") -> str:
    """Sanitize user-supplied text before embedding it in a prompt.

    Strips control characters (preserving newlines and tabs), replaces known
    role/delimiter markers with ``[FILTERED]``, and truncates oversized input.
    """
    cleaned = _CONTROL_CHARS.sub("", value)
    cleaned = _PROMPT_INJECTION_PATTERNS.sub("[FILTERED]", cleaned)
    if len(cleaned) > _MAX_FIELD_SIZE:
        cleaned = cleaned[:_MAX_FIELD_SIZE] + f"\n[TRUNCATED: {field_name} exceeded {_MAX_FIELD_SIZE} characters]"
    return cleaned


@dataclass(frozen=True)
class PromptTemplate:
    """An immutable, versioned prompt template."""

    key: str
    version: str
    content: str
    description: str

    def render(self, **values: str) -> str:
        return self.content.format(**values)


PROMPT_REGISTRY: dict[str, PromptTemplate] = {}


def _register(template: PromptTemplate) -> PromptTemplate:
    PROMPT_REGISTRY[template.key] = template
    return template


def get_prompt(key: str) -> PromptTemplate:
    """Retrieve a registered prompt template by key.

    Raises
    ------
    KeyError
        If no template is registered under *key*.
    """
    try:
        return PROMPT_REGISTRY[key]
    except KeyError:
        raise KeyError(f"Unknown prompt key '{key}'. Registered keys: {sorted(PROMPT_REGISTRY)}") from None


PROPOSAL_SYSTEM = _register(
    PromptTemplate(
        key="proposal_system",
        version="v1",
        content="You write confident, clear agency proposals.",
        description="System prompt for the proposal writer.",
    )
)

PROPOSAL_USER = _register(
    PromptTemplate(
        key="proposal_user",
        version="v1",
        content=(
            "Write a client-ready marketing proposal for {client_name}.\n"
            "Discovery notes:\n"
            "{notes}\n"
            "\n"
            "Include sections:\n"
            "1) Executive Summary\n"
            "2) Goals & Success Metrics\n"
            "3) Current Situation\n"
            "4) Strategy Overview\n"
            "5) Scope of Work (bullets)\n"
            "6) 30/60/90 Day Plan\n"
            "7) Pricing Options (3 tiers; middle is Recommended)\n"
            "8) Assumptions & What We Need From You\n"
            "9) Next Steps\n"
            "\n"
            "Rules: be specific, no fake results."
        ),
        description="User prompt embedding the client name and discovery notes.",
    )
)
