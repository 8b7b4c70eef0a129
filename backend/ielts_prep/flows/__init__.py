from .backend import GenerationBackend, GenerationError, GenerationMalformed, GenerationUnavailable, RateLimited
from .catalog import build_registry, get_registry
from .errors import (
	BackendRejected,
	BackendUnavailable,
	DuplicateOperation,
	FlowError,
	InvalidInput,
	MalformedOutput,
	MalformedSchema,
	UnknownOperation,
	Violation,
)
from .executor import FlowExecutor
from .registry import FollowUp, LegacyShape, OperationDescriptor, SchemaRegistry, ValidationOutcome, validate_against

__all__ = [
	"BackendRejected",
	"BackendUnavailable",
	"DuplicateOperation",
	"FlowError",
	"FlowExecutor",
	"FollowUp",
	"GenerationBackend",
	"GenerationError",
	"GenerationMalformed",
	"GenerationUnavailable",
	"InvalidInput",
	"LegacyShape",
	"MalformedOutput",
	"MalformedSchema",
	"OperationDescriptor",
	"RateLimited",
	"SchemaRegistry",
	"UnknownOperation",
	"ValidationOutcome",
	"Violation",
	"build_registry",
	"get_registry",
	"validate_against",
]
