"""Base language model interfaces."""
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from vllm_adapter.errors import InvalidOptionsError
from vllm_adapter.models import ExecutionOptions, GenerateOptions, LLMMeta, TokenizeOutput

logger = logging.getLogger(__name__)


class BaseLLMOutput(ABC):
    """A mergeable generation result.

    Streamed chunks are combined into one result by merging them in
    arrival order.
    """

    @abstractmethod
    def merge(self, other: "BaseLLMOutput") -> None:
        """Fold ``other`` into this output in place."""
        ...

    @abstractmethod
    def get_text_content(self) -> str:
        ...

    @abstractmethod
    def create_snapshot(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def load_snapshot(self, snapshot: Mapping[str, Any]) -> None:
        ...

    def __str__(self) -> str:
        return self.get_text_content()


class BaseLLM(ABC):
    """Abstract base class for language model adapters.

    Subclasses implement the remote operations; this class normalizes call
    options and owns the model identity and execution settings.
    """

    def __init__(
        self,
        model_id: str,
        execution_options: Optional[Union[ExecutionOptions, Mapping[str, Any]]] = None,
    ):
        self.model_id = model_id
        self.execution_options = ExecutionOptions.model_validate(
            execution_options if execution_options is not None else {}
        )

    @abstractmethod
    async def meta(self) -> LLMMeta:
        ...

    @abstractmethod
    async def tokenize(self, input: str) -> TokenizeOutput:
        ...

    @abstractmethod
    async def _generate(self, input: str, options: GenerateOptions) -> BaseLLMOutput:
        ...

    @abstractmethod
    def _stream(self, input: str, options: GenerateOptions) -> AsyncIterator[BaseLLMOutput]:
        ...

    async def generate(
        self,
        input: str,
        options: Optional[Union[GenerateOptions, Mapping[str, Any]]] = None,
    ) -> BaseLLMOutput:
        """Generate a complete response for ``input``."""
        options = self._normalize_options(options)
        logger.debug("Generate: model=%s", self.model_id)
        return await self._generate(input, options)

    async def stream(
        self,
        input: str,
        options: Optional[Union[GenerateOptions, Mapping[str, Any]]] = None,
    ) -> AsyncIterator[BaseLLMOutput]:
        """Stream response chunks for ``input``.

        Merge the yielded chunks in order to obtain the full response.
        """
        options = self._normalize_options(options)
        logger.debug("Stream: model=%s", self.model_id)
        async for chunk in self._stream(input, options):
            yield chunk

    @staticmethod
    def _normalize_options(
        options: Optional[Union[GenerateOptions, Mapping[str, Any]]],
    ) -> GenerateOptions:
        if options is None:
            return GenerateOptions()
        if isinstance(options, GenerateOptions):
            return options
        try:
            return GenerateOptions.model_validate(dict(options))
        except PydanticValidationError as err:
            raise InvalidOptionsError(
                f"Invalid generation options: {err.error_count()} validation error(s)",
                cause=err,
            )

    def create_snapshot(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "execution_options": self.execution_options.model_dump(),
        }

    def load_snapshot(self, snapshot: Mapping[str, Any]) -> None:
        self.model_id = snapshot["model_id"]
        self.execution_options = ExecutionOptions.model_validate(
            snapshot.get("execution_options") or {}
        )
