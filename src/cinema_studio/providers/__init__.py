"""Generation backend registry.

Built-in backends are looked up by name. Anything else is loaded from a
``package.module:factory`` path, where ``factory`` is a GenerationBackend
subclass or a zero-argument callable returning one.
"""

import importlib
from typing import Callable, Dict, List

from ..jobs.backends import GenerationBackend
from .dryrun import DryRunBackend

_BUILTIN: Dict[str, Callable[[], GenerationBackend]] = {
    "dryrun": DryRunBackend,
}


def list_backends() -> List[str]:
    return sorted(_BUILTIN.keys())


def register_backend(name: str, factory: Callable[[], GenerationBackend]) -> None:
    _BUILTIN[name] = factory


def get_backend(spec: str) -> GenerationBackend:
    """Resolve a backend name or import path to an instance.

    Raises:
        ValueError: Unknown name, bad import path, or a factory that does not
                    produce a GenerationBackend
    """
    factory = _BUILTIN.get(spec)
    if factory is None:
        if ":" not in spec:
            raise ValueError(
                f"Unknown backend '{spec}'. Built-in: {', '.join(list_backends())}; "
                "or use package.module:factory"
            )
        module_name, _, attr = spec.partition(":")
        try:
            module = importlib.import_module(module_name)
            factory = getattr(module, attr)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Cannot load backend '{spec}': {e}") from e

    backend = factory()
    if not isinstance(backend, GenerationBackend):
        raise ValueError(f"Backend '{spec}' did not produce a GenerationBackend")
    return backend
