import importlib
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

@dataclass
class JobContext:
    """Passed to handlers registered with ``pass_context=True``."""
    job_id: str
    name: str
    attempt: int
    report_progress: Callable[[int], Any]

@dataclass
class HandlerSpec:
    func: Callable
    pass_context: bool = False

    def __call__(self, data: Dict[str, Any], context: JobContext):
        if self.pass_context:
            return self.func(data, context)
        return self.func(data)

class HandlerRegistry:
    """Maps a job name to the callable that runs it."""

    def __init__(self):
        self._handlers: Dict[str, HandlerSpec] = {}

    def register(self, name: str, func: Callable, pass_context: bool = False) -> None:
        self._handlers[name] = HandlerSpec(func, pass_context)

    def handler(self, name: str, pass_context: bool = False):
        """Decorator form of ``register``."""
        def decorator(func):
            self.register(name, func, pass_context=pass_context)
            return func
        return decorator

    def get(self, name: str) -> Optional[HandlerSpec]:
        return self._handlers.get(name)

    def names(self) -> List[str]:
        return sorted(self._handlers)

    def update(self, other: "HandlerRegistry") -> None:
        self._handlers.update(other._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

def load_registry(path: str) -> HandlerRegistry:
    """Import a registry from ``package.module:attribute``."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Expected 'module:attribute', got {path!r}")
    registry = getattr(importlib.import_module(module_name), attr)
    if callable(registry) and not isinstance(registry, HandlerRegistry):
        registry = registry()
    if not isinstance(registry, HandlerRegistry):
        raise TypeError(f"{path} is not a HandlerRegistry")
    return registry
