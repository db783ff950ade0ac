"""Registry for restoring snapshotted objects by type name."""
from typing import Any, Callable, Dict, Mapping

from vllm_adapter.llm import IBMvLLM
from vllm_adapter.output import GenerationOutput

SnapshotFactory = Callable[[Mapping[str, Any]], Any]


class SnapshotRegistry:
    """Maps type names to factories that rebuild an object from its snapshot.

    Usage:
        registry = SnapshotRegistry()
        registry.register("GenerationOutput", GenerationOutput.from_snapshot)
        output = registry.restore("GenerationOutput", snapshot)
    """

    def __init__(self):
        self._factories: Dict[str, SnapshotFactory] = {}

    def register(self, name: str, factory: SnapshotFactory) -> None:
        """Register a factory for a type name."""
        self._factories[name] = factory

    def get(self, name: str) -> SnapshotFactory:
        """Get the factory for a type name.

        Raises:
            ValueError: If no factory is registered for the name.
        """
        factory = self._factories.get(name)
        if factory is None:
            available = ", ".join(sorted(self._factories.keys())) or "(none)"
            raise ValueError(
                f"No snapshot factory registered for '{name}'. "
                f"Available types: {available}"
            )
        return factory

    def restore(self, name: str, snapshot: Mapping[str, Any]) -> Any:
        return self.get(name)(snapshot)


def build_default_registry() -> SnapshotRegistry:
    """Create a registry with every snapshot-capable type of this package."""
    registry = SnapshotRegistry()
    registry.register("GenerationOutput", GenerationOutput.from_snapshot)
    registry.register("IBMvLLM", IBMvLLM.from_snapshot)
    return registry
