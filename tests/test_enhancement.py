import pytest

from contentflow.core.errors import JobValidationError, ServiceUnavailableError
from contentflow.services.enhancement import EnhancedContent, OllamaEnhancementEngine, build_user_prompt, parse_enhanced
from contentflow.services.llm.openai_client import compress_transcript, extract_json
from contentflow.services.ollama_client import OllamaChatResult


def test_extract_json_plain_and_wrapped():
    assert extract_json('{"a": 1}') == {"a": 1}
    assert extract_json('Sure! Here you go:\n```json\n{"a": {"b": 2}}\n```') == {"a": {"b": 2}}


@pytest.mark.parametrize("text", ["", "no json here", "[1, 2]"])
def test_extract_json_rejects(text):
    with pytest.raises(ValueError):
        extract_json(text)


def test_parse_enhanced_normalizes():
    content = parse_enhanced(
        {
            "optimized_title": "  Title  ",
            "description": "desc",
            "script_sentences": ["One.", " ", "Two."],
            "image_prompts": "not a list",
            "keywords": ["Bread", "YEAST"],
        },
        provider="openai",
    )
    assert content.optimized_title == "Title"
    assert content.script_sentences == ["One.", "Two."]
    assert content.image_prompts == []
    assert content.keywords == ["bread", "yeast"]
    assert content.provider == "openai"


def test_parse_enhanced_requires_title_and_script():
    with pytest.raises(ServiceUnavailableError):
        parse_enhanced({"optimized_title": "x", "script_sentences": []}, provider="openai")


def test_enhanced_content_round_trip():
    content = EnhancedContent("T", "D", ["s"], ["p"], ["k"], "fake")
    assert EnhancedContent.from_dict(content.to_dict()) == content


def test_build_user_prompt_needs_text():
    with pytest.raises(JobValidationError):
        build_user_prompt({"title": "x", "transcript": "", "description": ""})


def test_build_user_prompt_uses_transcript():
    prompt = build_user_prompt({"title": "Bread", "channel": "Lab", "tags": ["a"], "transcript": "Yeast makes gas."})
    assert "Bread" in prompt
    assert "Yeast makes gas." in prompt


def test_compress_transcript_caps_length():
    text = ". ".join(f"Sentence number {i} about bread" for i in range(2000))
    assert len(compress_transcript(text, max_chars=500)) <= 500


class _FakeOllama:
    def __init__(self, text):
        self.text = text

    def generate(self, model, prompt, system=None):
        return OllamaChatResult(text=self.text)


def test_ollama_engine_parses_output():
    engine = OllamaEnhancementEngine(
        _FakeOllama('{"optimized_title": "T", "script_sentences": ["a"], "image_prompts": ["p"]}'), "m"
    )
    content = engine.enhance({"title": "x", "transcript": "words here"})
    assert content.provider == "ollama"
    assert content.image_prompts == ["p"]


def test_ollama_engine_bad_output_is_service_fault():
    engine = OllamaEnhancementEngine(_FakeOllama("I cannot help with that"), "m")
    with pytest.raises(ServiceUnavailableError):
        engine.enhance({"title": "x", "transcript": "words here"})
