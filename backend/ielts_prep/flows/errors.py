from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

PathItem = Union[str, int]


@dataclass(frozen=True)
class Violation:
	path: Tuple[PathItem, ...]
	reason: str

	@property
	def location(self) -> str:
		return ".".join(str(p) for p in self.path) or "<root>"

	def to_dict(self) -> Dict[str, str]:
		return {"path": self.location, "reason": self.reason}

	def __str__(self) -> str:
		return f"{self.location}: {self.reason}"


class FlowError(Exception):
	kind = "FlowError"
	# Shown to end users; the technical message goes to logs and the response body.
	user_message = "Something went wrong. Please try again."

	def __init__(self, message: str, *, violations: Iterable[Violation] = ()) -> None:
		super().__init__(message)
		self.message = message
		self.violations: List[Violation] = list(violations)

	def fields(self) -> List[str]:
		return [v.location for v in self.violations]

	def to_dict(self) -> Dict[str, Any]:
		return {
			"error": self.kind,
			"message": self.message,
			"detail": self.user_message,
			"violations": [v.to_dict() for v in self.violations],
		}

	def __str__(self) -> str:
		if not self.violations:
			return self.message
		return f"{self.message} ({'; '.join(str(v) for v in self.violations)})"


# Registration-time errors. These are developer mistakes and stop the app from starting.

class DuplicateOperation(FlowError):
	kind = "DuplicateOperation"


class MalformedSchema(FlowError):
	kind = "MalformedSchema"


# Invocation-time errors.

class UnknownOperation(FlowError):
	kind = "UnknownOperation"
	user_message = "This practice feature is not available."


class InvalidInput(FlowError):
	kind = "InvalidInput"
	user_message = "Please check the highlighted fields and try again."


class BackendUnavailable(FlowError):
	kind = "BackendUnavailable"
	user_message = "The AI service is busy right now. Please try again later."

	def __init__(
		self,
		message: str,
		*,
		retry_after: Optional[float] = None,
		status_code: Optional[int] = None,
		rate_limited: bool = False,
	) -> None:
		super().__init__(message)
		self.retry_after = retry_after
		self.status_code = status_code
		self.rate_limited = rate_limited
		if rate_limited:
			self.user_message = "API rate limit exceeded. Please check your billing status or try again later."

	def to_dict(self) -> Dict[str, Any]:
		data = super().to_dict()
		data["retry_after"] = self.retry_after
		return data


class MalformedOutput(FlowError):
	kind = "MalformedOutput"
	user_message = "Something went wrong generating content. Please try again."


class BackendRejected(FlowError):
	"""The backend refused the request itself (bad key, bad schema, unknown model). Not retryable."""

	kind = "BackendRejected"
	user_message = "The AI service could not process this request. Please contact support."

	def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
		super().__init__(message)
		self.status_code = status_code
