"""Option and result models shared by the adapter."""
import asyncio
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class GuidedOptions(BaseModel):
    """Per-call constrained decoding override.

    At most one of the fields is honoured; see ``resolve_parameters`` for the
    priority order. Unknown keys are kept so they can be reported.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    choice: Optional[List[str]] = None
    grammar: Optional[str] = None
    json_schema: Any = Field(default=None, alias="json")
    regex: Optional[str] = None

    def provided(self) -> Dict[str, Any]:
        """Return the keys actually supplied, using their caller-facing names."""
        values: Dict[str, Any] = {}
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if value is not None:
                values[field.alias or name] = value
        for key, value in (self.model_extra or {}).items():
            if value is not None:
                values[key] = value
        return values


class GenerateOptions(BaseModel):
    """Options for a single generate or stream call."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    guided: Optional[GuidedOptions] = None
    signal: Optional[asyncio.Event] = None


class ExecutionOptions(BaseModel):
    """Execution settings carried by the adapter but not interpreted by it."""
    model_config = ConfigDict(extra="allow")

    max_retries: Optional[int] = None


class LLMMeta(BaseModel):
    """Model metadata reported by the backend."""
    token_limit: int


class TokenizeOutput(BaseModel):
    """Result of tokenizing one input."""
    tokens: List[Union[int, str]] = Field(default_factory=list)
    tokens_count: int
