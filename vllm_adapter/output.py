"""Generation output accumulated from unary or streamed responses."""
from typing import Any, Dict, Mapping, Optional

from vllm_adapter.base import BaseLLMOutput


class GenerationOutput(BaseLLMOutput):
    """Generated text plus the remaining response fields.

    ``meta`` holds whatever else the server returned for the response or
    chunk (stop reason, token counts, seed, ...). It is treated as an opaque
    bag and merged shallowly.
    """

    def __init__(self, text: str, meta: Optional[Mapping[str, Any]] = None):
        self.text = text
        self.meta: Dict[str, Any] = dict(meta or {})

    def merge(self, other: "GenerationOutput") -> None:
        """Append ``other`` to this output. Order-sensitive."""
        self.text += other.text
        self.meta.update(other.meta)

    def get_text_content(self) -> str:
        return self.text

    def create_snapshot(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "meta": dict(self.meta),
        }

    def load_snapshot(self, snapshot: Mapping[str, Any]) -> None:
        self.text = snapshot["text"]
        self.meta = dict(snapshot["meta"])

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any]) -> "GenerationOutput":
        output = cls("")
        output.load_snapshot(snapshot)
        return output

    def __repr__(self) -> str:
        return f"GenerationOutput(text={self.text!r}, meta={self.meta!r})"
