import json
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence

from .errors import PermanentGenerationFailure, TransientGenerationFailure
from .logging import logger


@dataclass
class GeneratedSentence:
    text: str
    translation: str
    context_before: Optional[str] = None
    context_after: Optional[str] = None
    context_before_translation: Optional[str] = None
    context_after_translation: Optional[str] = None
    model: Optional[str] = None


class ContentGenerator(Protocol):
    def generate_sentences(self, word: str, language: str, count: int,
                           known_words_hint: Optional[Sequence[str]] = None,
                           topic: Optional[str] = None) -> List[GeneratedSentence]:
        ...


class AudioGenerator(Protocol):
    def synthesize(self, text: str, language: str, word: Optional[str] = None) -> str:
        """Produce audio for ``text`` and return a reference to it (usually a file path)."""
        ...


SENTENCE_SYSTEM_PROMPT = (
    "You write short, natural example sentences for language learners. Return ONLY valid JSON."
)


def _strip_code_fences(raw: str) -> str:
    if raw.startswith("```"):
        lines = raw.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```")]
        raw = "\n".join(lines)
    return raw.strip()


def _build_sentence_prompt(word: str, language: str, count: int,
                           known_words_hint: Optional[Sequence[str]], topic: Optional[str]) -> str:
    hint = ""
    if known_words_hint:
        hint = f"\nPrefer vocabulary the learner already knows: {', '.join(known_words_hint)}."
    topic_line = f"\nKeep the sentences about this topic: {topic}." if topic else ""
    return f"""Write {count} different example sentences in {language} that use the word "{word}".{topic_line}{hint}

Return JSON:
{{
  "sentences": [
    {{
      "sentence": "the {language} sentence",
      "translation": "English translation",
      "context_before": "optional sentence that comes before, or empty",
      "context_after": "optional sentence that comes after, or empty",
      "context_before_translation": "translation of context_before, or empty",
      "context_after_translation": "translation of context_after, or empty"
    }}
  ]
}}"""


class LLMContentGenerator:
    """Sentence generator backed by an ``llm`` model (anything with ``prompt(text, system=...)``)."""

    def __init__(self, model: Any):
        if model is None:
            raise ValueError("An LLM model is required for sentence generation.")
        self.model = model

    def generate_sentences(self, word: str, language: str, count: int,
                           known_words_hint: Optional[Sequence[str]] = None,
                           topic: Optional[str] = None) -> List[GeneratedSentence]:
        if not word.strip():
            raise PermanentGenerationFailure("Cannot generate sentences for an empty word", word=word)
        if count < 1:
            return []

        prompt = _build_sentence_prompt(word, language, count, known_words_hint, topic)
        try:
            response = self.model.prompt(prompt, system=SENTENCE_SYSTEM_PROMPT)
            raw = response.text().strip()
        except Exception as e:
            raise TransientGenerationFailure(f"LLM request failed: {e}", word=word) from e

        try:
            data = json.loads(_strip_code_fences(raw))
        except json.JSONDecodeError as e:
            raise TransientGenerationFailure(f"LLM returned invalid JSON: {e}", word=word) from e

        items = data.get("sentences", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise TransientGenerationFailure("LLM response has no sentence list", word=word)

        model_id = getattr(self.model, "model_id", None)
        sentences = []
        for item in items:
            if not isinstance(item, dict):
                continue
            text = str(item.get("sentence", "")).strip()
            translation = str(item.get("translation", "")).strip()
            if not text or not translation:
                continue
            sentences.append(GeneratedSentence(
                text=text,
                translation=translation,
                context_before=item.get("context_before") or None,
                context_after=item.get("context_after") or None,
                context_before_translation=item.get("context_before_translation") or None,
                context_after_translation=item.get("context_after_translation") or None,
                model=model_id,
            ))
        logger.debug("sentences_generated", word=word, language=language,
                     requested=count, received=len(sentences))
        return sentences
