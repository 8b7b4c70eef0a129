from functools import lru_cache

from ..registry import SchemaRegistry
from . import charts, maps, reading, writing

_MODULES = (reading, writing, charts, maps)


def build_registry() -> SchemaRegistry:
	"""Register every IELTS flow on a fresh registry and freeze it."""
	registry = SchemaRegistry()
	for module in _MODULES:
		module.register(registry)
	registry.freeze()
	return registry


@lru_cache(maxsize=1)
def get_registry() -> SchemaRegistry:
	return build_registry()
