"""IBM vLLM adapter over the fmaas GenerationService gRPC API."""
import logging
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Union

from vllm_adapter.base import BaseLLM
from vllm_adapter.client import build_client
from vllm_adapter.errors import AbortError, MissingOutputError, classify_error
from vllm_adapter.models import ExecutionOptions, GenerateOptions, LLMMeta, TokenizeOutput
from vllm_adapter.output import GenerationOutput
from vllm_adapter.parameters import resolve_parameters

logger = logging.getLogger(__name__)


class IBMvLLM(BaseLLM):
    """Language model backed by a remote vLLM generation service.

    Features:
    - Model metadata, tokenization, unary and streaming generation
    - Guided decoding overrides (choice, grammar, json, regex) per call
    - Per-call cancellation via an ``asyncio.Event`` signal
    - Uniform error classification with a retryable flag

    The client is any object exposing async ``model_info``, ``tokenize``,
    ``generate`` and ``generate_stream`` that take and return dicts. It is
    never part of a snapshot.
    """

    def __init__(
        self,
        model_id: str,
        client: Optional[Any] = None,
        parameters: Optional[Mapping[str, Any]] = None,
        execution_options: Optional[Union[ExecutionOptions, Mapping[str, Any]]] = None,
    ):
        super().__init__(model_id, execution_options)
        self._shared_client = client is None
        self.client = client if client is not None else build_client()
        self.parameters: Dict[str, Any] = dict(parameters or {})

    async def meta(self) -> LLMMeta:
        try:
            response = await self.client.model_info({"model_id": self.model_id})
            return LLMMeta(token_limit=response["max_sequence_length"])
        except Exception as err:
            raise classify_error(err)

    async def tokenize(self, input: str) -> TokenizeOutput:
        try:
            response = await self.client.tokenize({
                "model_id": self.model_id,
                "requests": [{"text": input}],
                "return_tokens": True,
            })
            output = self._first_response(response)
            return TokenizeOutput(
                tokens=output.get("tokens") or [],
                tokens_count=output["token_count"],
            )
        except Exception as err:
            raise classify_error(err)

    async def _generate(self, input: str, options: GenerateOptions) -> GenerationOutput:
        try:
            response = await self.client.generate(
                {
                    "model_id": self.model_id,
                    "requests": [{"text": input}],
                    "params": self._prepare_parameters(options),
                },
                signal=options.signal,
            )
            meta = dict(self._first_response(response))
            text = meta.pop("text", "")
            return GenerationOutput(text, meta)
        except Exception as err:
            raise classify_error(err)

    async def _stream(self, input: str, options: GenerateOptions) -> AsyncIterator[GenerationOutput]:
        signal = options.signal
        try:
            stream = self.client.generate_stream(
                {
                    "model_id": self.model_id,
                    "request": {"text": input},
                    "params": self._prepare_parameters(options),
                },
                signal=signal,
            )
            async for chunk in stream:
                if signal is not None and signal.is_set():
                    raise AbortError()
                meta = dict(chunk)
                text = meta.pop("text", "")
                # Empty chunks come from the server's repetition checker.
                # TODO: drop this filter once the server stops emitting them.
                if text:
                    yield GenerationOutput(text, meta)
        except Exception as err:
            raise classify_error(err)

    def _prepare_parameters(self, options: GenerateOptions) -> Dict[str, Any]:
        return resolve_parameters(self.parameters, options.guided)

    @staticmethod
    def _first_response(response: Mapping[str, Any]) -> Mapping[str, Any]:
        responses = response.get("responses") or []
        if not responses:
            raise MissingOutputError()
        return responses[0]

    async def aclose(self) -> None:
        """Close a client that was passed in explicitly.

        Clients from ``build_client`` are shared with other adapters and are
        left open; see ``close_clients``.
        """
        if self._shared_client:
            return
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()

    def create_snapshot(self) -> Dict[str, Any]:
        return {
            **super().create_snapshot(),
            "client": None,
            "parameters": dict(self.parameters),
        }

    def load_snapshot(self, snapshot: Mapping[str, Any]) -> None:
        super().load_snapshot(snapshot)
        self.parameters = dict(snapshot.get("parameters") or {})
        client = snapshot.get("client")
        self._shared_client = client is None
        self.client = client if client is not None else build_client()

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any]) -> "IBMvLLM":
        instance = cls.__new__(cls)
        instance.load_snapshot(snapshot)
        logger.debug("Restored adapter for model=%s", instance.model_id)
        return instance
