"""Merging of base generation parameters with guided decoding overrides.

The backend accepts exactly one guided decoding mode per request, so an
override replaces the configured decoding settings instead of merging with it:

  choice   -> decoding.choice.choices
  grammar  -> decoding.grammar
  json     -> decoding.json_schema
  regex    -> decoding.regex

When several are given the first one in that order wins.
"""
import json
from typing import Any, Dict, Mapping, Optional, Union

from vllm_adapter.errors import UnsupportedConstraintError
from vllm_adapter.models import GuidedOptions


def resolve_parameters(
    base: Mapping[str, Any],
    guided: Optional[Union[GuidedOptions, Mapping[str, Any]]] = None,
) -> Dict[str, Any]:
    """Return the parameters to send for one call.

    The base mapping is never mutated and the result shares no mutable
    decoding state with it.

    Raises:
        UnsupportedConstraintError: If the override is non-empty but sets none
            of the supported keys to a non-empty value.
        json.JSONDecodeError: If a ``json`` override string is not valid JSON.
    """
    if guided is not None and not isinstance(guided, GuidedOptions):
        guided = GuidedOptions.model_validate(dict(guided))
    provided = guided.provided() if guided is not None else {}

    if not provided:
        return {**base, "decoding": dict(base.get("decoding") or {})}

    # Empty values (an empty grammar, no choices) select nothing, so an
    # override made only of them is rejected as unsupported.
    decoding: Dict[str, Any] = {}
    if provided.get("choice"):
        decoding["choice"] = {"choices": list(provided["choice"])}
    elif provided.get("grammar"):
        decoding["grammar"] = provided["grammar"]
    elif provided.get("json"):
        value = provided["json"]
        decoding["json_schema"] = json.loads(value) if isinstance(value, str) else value
    elif provided.get("regex"):
        decoding["regex"] = provided["regex"]
    else:
        raise UnsupportedConstraintError(provided.keys())

    return {**base, "decoding": decoding}
