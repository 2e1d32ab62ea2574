"""
Tests for the LLM-backed sentence generator.
Uses a mock model so no API calls are made.
"""

import json
import pytest
from typing import Any, List

from llm_vocab_study.errors import PermanentGenerationFailure, TransientGenerationFailure
from llm_vocab_study.generation import LLMContentGenerator, _strip_code_fences


class MockAIModel:
    """Mock AI model for consistent testing without actual API calls."""

    model_id = "mock-model"

    def __init__(self, reply: str = "", error: Exception = None):
        self.reply = reply
        self.error = error
        self.prompts: List[str] = []
        self.systems: List[str] = []

    def prompt(self, prompt_text: str, system: str = "") -> Any:
        """Mock prompt method that records the request and returns the canned reply."""
        self.prompts.append(prompt_text)
        self.systems.append(system)
        if self.error is not None:
            raise self.error
        reply = self.reply

        class Response:
            def text(self) -> str:
                return reply
        return Response()


SENTENCES_JSON = json.dumps({
    "sentences": [
        {
            "sentence": "El perro corre en el parque.",
            "translation": "The dog runs in the park.",
            "context_before": "Hace sol.",
            "context_after": "",
            "context_before_translation": "It is sunny.",
            "context_after_translation": "",
        },
        {"sentence": "Mi perro es pequeño.", "translation": "My dog is small."},
    ]
})


def test_model_required() -> None:
    with pytest.raises(ValueError):
        LLMContentGenerator(None)


def test_parses_sentences() -> None:
    model = MockAIModel(SENTENCES_JSON)
    sentences = LLMContentGenerator(model).generate_sentences("perro", "spanish", 2)

    assert [s.text for s in sentences] == ["El perro corre en el parque.", "Mi perro es pequeño."]
    assert sentences[0].context_before == "Hace sol."
    assert sentences[0].context_before_translation == "It is sunny."
    # Empty context comes back as None
    assert sentences[0].context_after is None
    assert all(s.model == "mock-model" for s in sentences)
    assert "JSON" in model.systems[0]


def test_prompt_mentions_topic_and_known_words() -> None:
    model = MockAIModel(SENTENCES_JSON)
    LLMContentGenerator(model).generate_sentences(
        "perro", "spanish", 3, known_words_hint=["gato", "casa"], topic="pets"
    )

    prompt = model.prompts[0]
    assert '"perro"' in prompt
    assert "3 different example sentences in spanish" in prompt
    assert "pets" in prompt
    assert "gato, casa" in prompt


def test_code_fences_are_stripped() -> None:
    model = MockAIModel(f"```json\n{SENTENCES_JSON}\n```")
    sentences = LLMContentGenerator(model).generate_sentences("perro", "spanish", 2)
    assert len(sentences) == 2
    assert _strip_code_fences("```\n[]\n```") == "[]"


def test_bare_list_reply_is_accepted() -> None:
    model = MockAIModel(json.dumps([{"sentence": "Hola perro.", "translation": "Hello dog."}]))
    sentences = LLMContentGenerator(model).generate_sentences("perro", "spanish", 1)
    assert [s.translation for s in sentences] == ["Hello dog."]


def test_incomplete_items_are_skipped() -> None:
    reply = json.dumps({"sentences": [
        {"sentence": "Sin traducción."},
        {"translation": "No sentence."},
        "not an object",
        {"sentence": "Un perro.", "translation": "A dog."},
    ]})
    sentences = LLMContentGenerator(MockAIModel(reply)).generate_sentences("perro", "spanish", 4)
    assert [s.text for s in sentences] == ["Un perro."]


def test_invalid_json_is_transient() -> None:
    with pytest.raises(TransientGenerationFailure):
        LLMContentGenerator(MockAIModel("Sure! Here are some sentences")).generate_sentences("perro", "spanish", 2)


def test_wrong_shape_is_transient() -> None:
    with pytest.raises(TransientGenerationFailure):
        LLMContentGenerator(MockAIModel('{"sentences": "none"}')).generate_sentences("perro", "spanish", 2)


def test_model_error_is_transient() -> None:
    model = MockAIModel(error=ConnectionError("reset by peer"))
    with pytest.raises(TransientGenerationFailure) as exc:
        LLMContentGenerator(model).generate_sentences("perro", "spanish", 2)
    assert exc.value.word == "perro"


def test_empty_word_is_permanent() -> None:
    model = MockAIModel(SENTENCES_JSON)
    with pytest.raises(PermanentGenerationFailure):
        LLMContentGenerator(model).generate_sentences("   ", "spanish", 2)
    assert model.prompts == []


def test_zero_count_skips_the_model() -> None:
    model = MockAIModel(SENTENCES_JSON)
    assert LLMContentGenerator(model).generate_sentences("perro", "spanish", 0) == []
    assert model.prompts == []
