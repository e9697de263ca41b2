"""Structured generation through an agno Agent.

Callers depend only on :class:`StructuredGenerator`, so tests pass a fake and
the provider can change without touching the summary or update pipelines.
"""

from typing import Protocol, TypeVar

from agno.agent import Agent
from agno.models.openrouter import OpenRouter
from loguru import logger
from pydantic import BaseModel, ValidationError

from standupllm.config import get_chat_model_id

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class GenerationFailure(Exception):
    """The model call failed or its output did not match the requested schema."""


class StructuredGenerator(Protocol):
    def generate(self, prompt: str, output_schema: type[SchemaT]) -> SchemaT: ...

    def generate_text(self, prompt: str) -> str: ...


class AgnoGenerator:
    """One-shot agno Agent per call, backed by an OpenRouter model."""

    def __init__(self, model_id: str | None = None, temperature: float | None = None):
        self.model_id = model_id or get_chat_model_id()
        self.temperature = temperature

    def _model(self) -> OpenRouter:
        model_params = {"id": self.model_id}
        if self.temperature is not None:
            model_params["temperature"] = self.temperature
        return OpenRouter(**model_params)

    def generate(self, prompt: str, output_schema: type[SchemaT]) -> SchemaT:
        """Generate an instance of ``output_schema`` from ``prompt``.

        Raises:
            GenerationFailure: If the model call fails or returns anything else
        """
        agent = Agent(name="standup-structured", model=self._model(), output_schema=output_schema)
        try:
            result = agent.run(prompt)
        except Exception as e:
            logger.error(f"Structured generation with {self.model_id} failed: {e}")
            raise GenerationFailure(str(e)) from e

        content = getattr(result, "content", None)
        if isinstance(content, output_schema):
            return content
        try:
            if isinstance(content, dict):
                return output_schema.model_validate(content)
            if isinstance(content, str):
                return output_schema.model_validate_json(content)
        except ValidationError as e:
            raise GenerationFailure(f"Model output does not match {output_schema.__name__}: {e}") from e
        raise GenerationFailure(f"Model returned {type(content).__name__}, expected {output_schema.__name__}")

    def generate_text(self, prompt: str) -> str:
        agent = Agent(name="standup-text", model=self._model())
        try:
            result = agent.run(prompt)
        except Exception as e:
            logger.error(f"Text generation with {self.model_id} failed: {e}")
            raise GenerationFailure(str(e)) from e
        return str(getattr(result, "content", "") or "")
