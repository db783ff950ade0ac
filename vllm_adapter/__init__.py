"""Adapter exposing an IBM vLLM generation service as a language model."""
from vllm_adapter.client import ClientConfig, GrpcGenerationClient, build_client, close_clients
from vllm_adapter.errors import (
    AbortError,
    FrameworkError,
    InvalidOptionsError,
    LLMError,
    MissingOutputError,
    TransportError,
    UnsupportedConstraintError,
    ValidationError,
    classify_error,
)
from vllm_adapter.llm import IBMvLLM
from vllm_adapter.models import ExecutionOptions, GenerateOptions, GuidedOptions, LLMMeta, TokenizeOutput
from vllm_adapter.output import GenerationOutput
from vllm_adapter.parameters import resolve_parameters
from vllm_adapter.registry import SnapshotRegistry, build_default_registry

__all__ = [
    "AbortError",
    "ClientConfig",
    "ExecutionOptions",
    "FrameworkError",
    "GenerateOptions",
    "GenerationOutput",
    "GrpcGenerationClient",
    "GuidedOptions",
    "IBMvLLM",
    "InvalidOptionsError",
    "LLMError",
    "LLMMeta",
    "MissingOutputError",
    "SnapshotRegistry",
    "TokenizeOutput",
    "TransportError",
    "UnsupportedConstraintError",
    "ValidationError",
    "build_client",
    "build_default_registry",
    "classify_error",
    "close_clients",
    "resolve_parameters",
]
