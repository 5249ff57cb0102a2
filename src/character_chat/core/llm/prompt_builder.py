"""LLM system prompt building from character personas and recalled memories."""

import re
from typing import List, Optional, Sequence, Union

from ..protocols import CharacterPersona, MemorySearchResult

MAX_EXAMPLE_DIALOGUES = 3

MemoryLike = Union[str, MemorySearchResult]


def substitute_placeholders(text: str, user_name: str, char_name: str) -> str:
    """Replace {{user}} and {{char}} placeholders (case-insensitive)."""
    text = re.sub(r"\{\{user\}\}", user_name, text, flags=re.IGNORECASE)
    return re.sub(r"\{\{char\}\}", char_name, text, flags=re.IGNORECASE)


class LLMPromptBuilder:
    """Builds the system prompt for a persona.

    The output is a pure function of its inputs. Sections appear in a fixed
    order and empty persona fields are skipped. The identity and speech style
    directives are repeated after the memory section so they sit at both ends
    of the prompt.
    """

    def __init__(self, user_name: str = "User"):
        self.user_name = user_name

    def build_system_prompt(
        self,
        persona: CharacterPersona,
        memories: Optional[Sequence[MemoryLike]] = None,
        user_name: Optional[str] = None,
    ) -> str:
        """Assemble the full system prompt."""
        user = user_name or self.user_name
        name = persona.name
        sections: List[str] = [self._identity(persona)]

        fields = [
            ("Appearance", persona.appearance),
            ("Description", persona.description),
            ("Personality", persona.personality),
            ("Role", persona.role),
            ("World Setting", persona.world_setting),
            ("Relationship with the User", persona.relationship),
            ("Speech Style", persona.speech_style),
            ("Tone", persona.tone),
        ]
        for title, value in fields:
            if value and value.strip():
                sections.append(f"[{title}]\n{value.strip()}")

        if persona.system_prompt and persona.system_prompt.strip():
            extra = substitute_placeholders(persona.system_prompt.strip(), user, name)
            sections.append(f"[Additional Instructions]\n{extra}")

        examples = self._examples(persona, user)
        if examples:
            sections.append(examples)

        sections.append(self._directives(name, user))

        if persona.enable_memory and memories:
            lines = [f"- {self._memory_text(m)}" for m in memories]
            sections.append(
                "[Recalled Memories]\n"
                f"Things {name} remembers about {user} from earlier conversations:\n"
                + "\n".join(lines)
            )

        sections.append(self._reinforcement(persona))
        return "\n\n".join(sections)

    @staticmethod
    def _identity(persona: CharacterPersona) -> str:
        return (
            f"You are {persona.name}. Stay fully in character as {persona.name} "
            "for the entire conversation."
        )

    @staticmethod
    def _memory_text(memory: MemoryLike) -> str:
        return memory if isinstance(memory, str) else memory.content

    @staticmethod
    def _examples(persona: CharacterPersona, user: str) -> str:
        lines: List[str] = []
        for example in persona.example_dialogues[:MAX_EXAMPLE_DIALOGUES]:
            reply = example.assistant.strip()
            if not reply:
                continue
            lines.append(f"{user}: {example.user.strip() or '...'}\n{persona.name}: {reply}")
        if not lines:
            return ""
        return (
            "[Example Dialogues]\n"
            f"Follow the voice and writing style of {persona.name} in these examples:\n\n"
            + "\n\n".join(lines)
        )

    @staticmethod
    def _directives(name: str, user: str) -> str:
        rules = [
            f"Never reveal or hint that you are an AI, a language model or a program. You are {name}.",
            LLMPromptBuilder._voice_rule(name),
            "Wrap actions, gestures and stage directions in *asterisks*.",
            'Avoid generic assistant phrasing such as "How can I help you?" or "As an AI".',
            "Lead the conversation: bring up topics, ask questions and react with emotion instead of only answering.",
            f"Never speak, act or decide for {user}. Write only {name}'s words and actions.",
        ]
        numbered = "\n".join(f"{i}. {rule}" for i, rule in enumerate(rules, start=1))
        return f"[Rules - Always Follow]\n{numbered}"

    @staticmethod
    def _voice_rule(name: str) -> str:
        return f"Always speak in {name}'s own voice, vocabulary and manner."

    @classmethod
    def _reinforcement(cls, persona: CharacterPersona) -> str:
        """Identity, voice rule and speech style, repeated word for word."""
        lines = ["[Reminder]", cls._identity(persona), cls._voice_rule(persona.name)]
        if persona.speech_style and persona.speech_style.strip():
            lines.append(f"[Speech Style]\n{persona.speech_style.strip()}")
        return "\n".join(lines)


def build_system_prompt(
    persona: CharacterPersona,
    memories: Optional[Sequence[MemoryLike]] = None,
    user_name: str = "User",
) -> str:
    """Module-level shortcut for `LLMPromptBuilder.build_system_prompt`."""
    return LLMPromptBuilder(user_name).build_system_prompt(persona, memories)
