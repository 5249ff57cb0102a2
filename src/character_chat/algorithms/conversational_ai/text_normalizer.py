"""Text normalization for provider replies before they are persisted."""

import re
from typing import List, Pattern

QUOTES = "\"“”"

INFO_BLOCK = re.compile(r"```INFO[\s\S]*?```", re.IGNORECASE)
BARE_INFO_BLOCK = re.compile(
    r"\nINFO\n[\U0001F552\U0001F310\U0001F4C4\U0001F4BC|❤️\U0001F4A6\[\]:\s\w가-힣,.-]+(\n|$)",
    re.IGNORECASE,
)
DIALOGUE_REECHO = re.compile(rf"(\n[가-힣a-zA-Z]+\|[{QUOTES}].*?[{QUOTES}])+(\n|$)")
IMAGE_MARKER = re.compile(rf"=[{QUOTES}](\[이미지\])?[{QUOTES}]?")
BROKEN_IMAGE_ATTR = re.compile(rf"=[{QUOTES}][^{QUOTES}\n]*[{QUOTES}]?")
USER_PLACEHOLDER = re.compile(r"\{\{user\}\}", re.IGNORECASE)
CHAR_PLACEHOLDER = re.compile(r"\{\{char\}\}", re.IGNORECASE)
EXCESS_NEWLINES = re.compile(r"\n{3,}")

SANITIZATION_MARKERS: List[Pattern[str]] = [
    re.compile(r"```INFO", re.IGNORECASE),
    re.compile(rf"\n[가-힣a-zA-Z]+\|[{QUOTES}].*?[{QUOTES}](\n|$)"),
    IMAGE_MARKER,
    USER_PLACEHOLDER,
    CHAR_PLACEHOLDER,
]


class TextNormalizer:
    """Strips formatting artifacts that role-play models echo back."""

    def __init__(self, user_name: str = "User", char_name: str = "Character"):
        self.user_name = user_name
        self.char_name = char_name

    def clean_llm_response(self, response: str) -> str:
        """Clean a provider reply; stage directions in *asterisks* are kept."""
        if not response:
            return ""

        cleaned = INFO_BLOCK.sub("", response)
        cleaned = BARE_INFO_BLOCK.sub("\n", cleaned)

        # Name|"line" re-echo of the dialogue
        cleaned = DIALOGUE_REECHO.sub("\n", cleaned)

        cleaned = IMAGE_MARKER.sub("", cleaned)
        cleaned = BROKEN_IMAGE_ATTR.sub("", cleaned)

        cleaned = USER_PLACEHOLDER.sub(self.user_name, cleaned)
        cleaned = CHAR_PLACEHOLDER.sub(self.char_name, cleaned)

        cleaned = EXCESS_NEWLINES.sub("\n\n", cleaned)
        return cleaned.strip()

    @staticmethod
    def needs_sanitization(response: str) -> bool:
        """Check whether a reply carries any known artifact (for logging)."""
        return any(pattern.search(response) for pattern in SANITIZATION_MARKERS)


def sanitize_response(response: str, user_name: str = "User", char_name: str = "Character") -> str:
    """Module-level shortcut for `TextNormalizer.clean_llm_response`."""
    return TextNormalizer(user_name, char_name).clean_llm_response(response)
