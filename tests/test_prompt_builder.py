"""
Tests for system prompt assembly.
"""

from character_chat.core.llm.prompt_builder import (
    LLMPromptBuilder,
    build_system_prompt,
    substitute_placeholders,
)
from character_chat.core.protocols import CharacterPersona, ExampleDialogue, MemorySearchResult


def _memory(content: str) -> MemorySearchResult:
    return MemorySearchResult(
        memory_id=1, room_id=1, content=content, importance=5, similarity=0.9
    )


class TestPromptBuilder:
    """Section order, memory injection and the closing reminder."""

    def test_sections_in_fixed_order(self, eru: CharacterPersona) -> None:
        """Test identity, persona fields, examples, rules, memories, reminder."""
        prompt = LLMPromptBuilder().build_system_prompt(
            eru, [_memory("User likes cats")], user_name="Mina"
        )

        markers = [
            "You are Eru.",
            "[Appearance]",
            "[Personality]",
            "[Speech Style]",
            "[Tone]",
            "[Additional Instructions]",
            "[Example Dialogues]",
            "[Rules - Always Follow]",
            "[Recalled Memories]",
            "[Reminder]",
        ]
        positions = [prompt.index(marker) for marker in markers]
        assert positions == sorted(positions)

    def test_empty_fields_are_skipped(self, hale: CharacterPersona) -> None:
        """Test persona fields without content produce no section."""
        prompt = build_system_prompt(hale)
        assert "[Appearance]" not in prompt
        assert "[World Setting]" not in prompt
        assert "[Example Dialogues]" not in prompt
        assert "[Personality]\nGruff but fair." in prompt

    def test_memories_listed_as_bullets(self, eru: CharacterPersona) -> None:
        """Test recalled facts appear as plain bullet lines."""
        prompt = build_system_prompt(eru, [_memory("User likes cats"), "User is a nurse"])
        assert "- User likes cats\n- User is a nurse" in prompt

    def test_no_memory_section_when_disabled(self, hale: CharacterPersona) -> None:
        """Test memory is not injected for personas with memory off."""
        prompt = build_system_prompt(hale, [_memory("User likes cats")])
        assert "[Recalled Memories]" not in prompt
        assert "User likes cats" not in prompt

    def test_reminder_repeats_identity_and_speech_style(self, eru: CharacterPersona) -> None:
        """Test the closing reminder repeats earlier directives word for word."""
        prompt = build_system_prompt(eru, [_memory("User likes cats")], user_name="Mina")
        head, reminder = prompt.split("\n\n[Reminder]\n")
        identity, voice_rule, style_header, style = reminder.split("\n")

        assert reminder == (
            "You are Eru. Stay fully in character as Eru for the entire conversation.\n"
            "Always speak in Eru's own voice, vocabulary and manner.\n"
            f"[Speech Style]\n{eru.speech_style.strip()}"
        )
        assert head.startswith(identity + "\n\n")
        assert f"2. {voice_rule}" in head
        assert f"{style_header}\n{style}" in head
        assert head.index("[Recalled Memories]") > head.index("[Rules - Always Follow]")

    def test_reminder_without_speech_style(self, hale: CharacterPersona) -> None:
        """Test the reminder omits the style line when the persona has none."""
        hale.speech_style = ""
        reminder = build_system_prompt(hale).split("[Reminder]\n")[1]
        assert reminder.split("\n") == [
            "You are Captain Hale. Stay fully in character as Captain Hale for the entire conversation.",
            "Always speak in Captain Hale's own voice, vocabulary and manner.",
        ]

    def test_numbered_rules(self, eru: CharacterPersona) -> None:
        """Test behavioral directives are numbered."""
        prompt = build_system_prompt(eru)
        rules = prompt[prompt.index("[Rules - Always Follow]") :]
        assert "1. Never reveal" in rules
        assert "*asterisks*" in rules
        assert "5. Lead the conversation" in rules

    def test_placeholders_substituted(self, eru: CharacterPersona) -> None:
        """Test {{user}} in free-form instructions uses the user's name."""
        prompt = build_system_prompt(eru, user_name="Mina")
        assert "Call Mina a fellow traveller." in prompt
        assert "{{user}}" not in prompt

    def test_at_most_three_examples(self, eru: CharacterPersona) -> None:
        """Test few-shot examples are capped at three."""
        eru.example_dialogues = [
            ExampleDialogue(user=f"q{i}", assistant=f"a{i}") for i in range(5)
        ]
        prompt = build_system_prompt(eru)
        assert "Eru: a2" in prompt
        assert "Eru: a3" not in prompt

    def test_deterministic(self, eru: CharacterPersona) -> None:
        """Test identical inputs produce identical prompts."""
        memories = [_memory("User likes cats")]
        assert build_system_prompt(eru, memories) == build_system_prompt(eru, memories)

    def test_substitute_placeholders_case_insensitive(self) -> None:
        """Test {{USER}} and {{Char}} are both replaced."""
        assert substitute_placeholders("{{USER}} meets {{Char}}", "Mina", "Eru") == "Mina meets Eru"
