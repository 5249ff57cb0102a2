"""
LLM-based extraction of durable facts about the user.

A single low-temperature JSON-mode completion pulls long-lived facts
(name, preferences, hobbies, job, relationships) out of one exchange.
Transient content is excluded. Nothing is persisted here.
"""

import json
from typing import Any, List, Optional

from openai import AsyncOpenAI

from ....core.logging import get_logger

logger = get_logger(__name__)

FACT_EXTRACTION_PROMPT = """Analyze the following conversation and extract important facts about the user (User) that should be remembered for future conversations.
Focus on: Name, preferences, hobbies, job, relationships, personal details.
Ignore: Small talk, greetings, transient feelings, questions.

Conversation:
User: {user_message}
AI: {ai_response}

Return a JSON object with a key "facts" containing an array of strings. Each string should be a concise fact.
If no important facts are found, return {{ "facts": [] }}.

Example output:
{{ "facts": ["User likes cats", "User's name is Cheolsu"] }}
"""


class FactExtractor:
    """Extracts memorable user facts with an OpenAI chat completion."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        temperature: float = 0.1,
        client: Optional[Any] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.client = client

    def _get_client(self) -> Optional[Any]:
        if self.client is None and self.api_key:
            self.client = AsyncOpenAI(api_key=self.api_key)
        return self.client

    async def extract_important_facts(
        self, user_message: str, ai_response: str
    ) -> List[str]:
        """Return concise facts about the user, or [] on any failure."""
        client = self._get_client()
        if client is None:
            logger.debug("Fact extraction skipped: no OpenAI credentials")
            return []

        prompt = FACT_EXTRACTION_PROMPT.format(
            user_message=user_message, ai_response=ai_response
        )

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "You are a helpful assistant."},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
            )
            content = response.choices[0].message.content if response.choices else None
            if not content:
                return []
            parsed = json.loads(content)
        except Exception as e:
            logger.error("Fact extraction failed", error=str(e))
            return []

        facts = parsed.get("facts") if isinstance(parsed, dict) else None
        if not isinstance(facts, list):
            return []
        return [fact.strip() for fact in facts if isinstance(fact, str) and fact.strip()]
