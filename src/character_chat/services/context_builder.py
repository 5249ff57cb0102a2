"""
Conversation context assembly for provider calls.

Picks the most recent active messages that fit a token budget, then
appends the new user turn.
"""

import math
from typing import Dict, List, Optional

from ..core.config import ChatConfig
from ..core.llm.providers import ChatMessage
from ..core.protocols import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Message

# History budget in tokens per backend model
TOKEN_BUDGETS: Dict[str, int] = {
    "gpt-3.5-turbo": 3000,
    "gpt-4": 6000,
    "claude-3-haiku-20240307": 150000,
    "claude-3-5-sonnet-20241022": 150000,
    "claude-3-opus-20240229": 150000,
}

HISTORY_BUDGET_SHARE = 0.8


class ContextBuilder:
    """Builds the provider message list for one exchange."""

    def __init__(self, config: Optional[ChatConfig] = None):
        self.config = config or ChatConfig()

    def estimate_tokens(self, text: str) -> int:
        return math.ceil(len(text) / self.config.chars_per_token)

    def token_budget(self, model: str) -> int:
        return TOKEN_BUDGETS.get(model, self.config.default_token_budget)

    def select_recent(self, history: List[Message], model: str) -> List[Message]:
        """Newest messages, reduced two at a time until they fit the budget."""
        budget = self.token_budget(model) * HISTORY_BUDGET_SHARE
        turns = [m for m in history if m.role in (ROLE_USER, ROLE_ASSISTANT)]
        count = self.config.max_recent_messages

        while count > 0:
            recent = turns[-count:]
            used = self.estimate_tokens("\n".join(m.content for m in recent))
            if used < budget:
                return recent
            count -= 2
        return []

    def build(
        self,
        system_prompt: str,
        history: List[Message],
        user_message: str,
        model: str,
        guidance: Optional[str] = None,
    ) -> List[ChatMessage]:
        """System prompt, recent history, then the new user turn."""
        messages = [ChatMessage(role=ROLE_SYSTEM, content=system_prompt)]
        messages.extend(
            ChatMessage(role=m.role, content=m.content)
            for m in self.select_recent(history, model)
        )

        content = user_message
        if guidance and guidance.strip():
            content = f"{user_message}\n\n(OOC: {guidance.strip()})"
        messages.append(ChatMessage(role=ROLE_USER, content=content))
        return messages
