"""Tests for the agno-backed structured generator."""

from unittest.mock import MagicMock, patch

import pytest
from pydantic import BaseModel

from standupllm.llm import AgnoGenerator, GenerationFailure


class Answer(BaseModel):
    text: str
    score: int


@pytest.fixture
def mock_agent_cls():
    with patch("standupllm.llm.OpenRouter"), patch("standupllm.llm.Agent") as agent_cls:
        yield agent_cls


class TestAgnoGenerator:
    """Tests for AgnoGenerator.generate and generate_text."""

    def test_returns_schema_instance(self, mock_agent_cls):
        """Test that parsed model output is returned as is."""
        mock_agent_cls.return_value.run.return_value = MagicMock(content=Answer(text="hi", score=1))

        result = AgnoGenerator(model_id="test/model").generate("prompt", Answer)

        assert result == Answer(text="hi", score=1)
        assert mock_agent_cls.call_args.kwargs["output_schema"] is Answer

    @pytest.mark.parametrize("content", [{"text": "hi", "score": 2}, '{"text": "hi", "score": 2}'])
    def test_validates_dict_and_json(self, mock_agent_cls, content):
        """Test that raw dict or JSON output is validated against the schema."""
        mock_agent_cls.return_value.run.return_value = MagicMock(content=content)
        assert AgnoGenerator(model_id="test/model").generate("prompt", Answer) == Answer(text="hi", score=2)

    def test_invalid_output(self, mock_agent_cls):
        """Test that output not matching the schema is a generation failure."""
        mock_agent_cls.return_value.run.return_value = MagicMock(content={"text": "missing score"})
        with pytest.raises(GenerationFailure):
            AgnoGenerator(model_id="test/model").generate("prompt", Answer)

    def test_unexpected_output_type(self, mock_agent_cls):
        """Test that non-structured output is a generation failure."""
        mock_agent_cls.return_value.run.return_value = MagicMock(content=None)
        with pytest.raises(GenerationFailure, match="expected Answer"):
            AgnoGenerator(model_id="test/model").generate("prompt", Answer)

    def test_model_error(self, mock_agent_cls):
        """Test that provider errors are wrapped."""
        mock_agent_cls.return_value.run.side_effect = RuntimeError("rate limited")
        with pytest.raises(GenerationFailure, match="rate limited"):
            AgnoGenerator(model_id="test/model").generate("prompt", Answer)

    def test_generate_text(self, mock_agent_cls):
        """Test plain text generation."""
        mock_agent_cls.return_value.run.return_value = MagicMock(content="hello")
        assert AgnoGenerator(model_id="test/model").generate_text("prompt") == "hello"

    def test_default_model_from_env(self, monkeypatch):
        """Test that the model id falls back to OPENROUTER_MODEL."""
        monkeypatch.setenv("OPENROUTER_MODEL", "anthropic/claude-3.5-sonnet")
        assert AgnoGenerator().model_id == "anthropic/claude-3.5-sonnet"
