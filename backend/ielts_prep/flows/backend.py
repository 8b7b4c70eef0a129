from __future__ import annotations
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple


class GenerationError(Exception):
	"""Any failure reported by the generation backend."""

	def __init__(self, message: str, *, status_code: Optional[int] = None, retry_after: Optional[float] = None) -> None:
		super().__init__(message)
		self.status_code = status_code
		self.retry_after = retry_after


class GenerationUnavailable(GenerationError):
	"""Transient failure: network, timeout, 5xx."""


class RateLimited(GenerationUnavailable):
	"""Quota or rate limit hit (HTTP 429)."""


class GenerationMalformed(GenerationError):
	"""The backend answered but the answer could not be read as structured data."""


class GenerationBackend(Protocol):
	async def generate_structured(
		self,
		prompt: str,
		response_schema: Dict[str, Any],
		*,
		safety_settings: Sequence[Tuple[str, str]] = (),
	) -> Any:
		...

	async def generate_image(self, prompt: str) -> str:
		...
