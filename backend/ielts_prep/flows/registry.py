from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ValidationError

from .errors import DuplicateOperation, MalformedSchema, UnknownOperation, Violation
from .shapes import FlowModel, duplicate_tags, literal_values, wire_names
from .templates import check_template

logger = logging.getLogger(__name__)

# (resolved input, normalized output) -> violations
PostValidator = Callable[[Mapping[str, Any], Mapping[str, Any]], List[Violation]]


@dataclass(frozen=True)
class LegacyShape:
	"""An older output shape and the rule that turns it into the current one.

	``reconcile`` receives the raw candidate and returns the reconciled copy, or
	``None`` when the candidate does not look like this legacy shape.
	"""

	name: str
	reconcile: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


@dataclass(frozen=True)
class FollowUp:
	"""Best-effort second generation step, rendered from the first step's output.

	Runs only when ``trigger_field`` is present and non-empty in the output; its
	result lands in ``target_field``.
	"""

	trigger_field: str
	target_field: str
	template: str


@dataclass(frozen=True)
class OperationDescriptor:
	name: str
	input_model: Type[FlowModel]
	output_model: Type[FlowModel]
	template: str
	legacy: Tuple[LegacyShape, ...] = ()
	post_validate: Optional[PostValidator] = None
	# optional enum input fields the executor picks at random when the caller leaves them out
	random_fields: Tuple[str, ...] = ()
	follow_up: Optional[FollowUp] = None
	description: str = ""
	# (harm category, block threshold) pairs sent with the structured request
	safety_settings: Tuple[Tuple[str, str], ...] = ()

	def response_schema(self) -> Dict[str, Any]:
		"""JSON schema of the output handed to the backend as the requested shape."""
		schema = self.output_model.model_json_schema(by_alias=True)
		if self.follow_up is not None:
			# the follow-up field is filled by the server, never by the model
			schema.get("properties", {}).pop(self.follow_up.target_field, None)
			required = schema.get("required")
			if required and self.follow_up.target_field in required:
				schema["required"] = [r for r in required if r != self.follow_up.target_field]
		return schema

	def random_choices(self) -> Dict[str, Tuple[str, ...]]:
		names = wire_names(self.input_model)
		return {
			f: literal_values(self.input_model.model_fields[names[f]].annotation)
			for f in self.random_fields
			if f in names
		}


@dataclass(frozen=True)
class ValidationOutcome:
	value: Optional[Dict[str, Any]] = None
	violations: Tuple[Violation, ...] = field(default_factory=tuple)

	@property
	def ok(self) -> bool:
		return self.value is not None and not self.violations


def validate_against(model: Type[BaseModel], candidate: Any) -> ValidationOutcome:
	"""Structurally validate ``candidate`` against ``model``. Never raises.

	Surplus keys are tolerated and dropped, optional fields with defaults are
	filled in, absent optional fields without defaults stay absent.
	"""
	try:
		instance = model.model_validate(candidate)
	except ValidationError as exc:
		return ValidationOutcome(violations=tuple(_violations_from(exc)))
	return ValidationOutcome(value=instance.model_dump(mode="json", by_alias=True, exclude_none=True))


def _violations_from(exc: ValidationError) -> Iterator[Violation]:
	for error in exc.errors(include_url=False):
		path = tuple(error.get("loc", ()))
		ctx = error.get("ctx") or {}
		if error.get("type") in ("invalid_tag", "union_tag_invalid", "union_tag_not_found"):
			# point at the tag field rather than the union holding it
			discriminator = str(ctx.get("discriminator", "")).strip("'\"")
			if discriminator:
				path = path + (discriminator,)
		yield Violation(path, error.get("msg", "invalid value"))


def check_descriptor(descriptor: OperationDescriptor) -> List[Violation]:
	problems: List[Violation] = []
	for reason in check_template(descriptor.template, descriptor.input_model):
		problems.append(Violation(("template",), reason))
	for path, reason in duplicate_tags(descriptor.output_model):
		problems.append(Violation(("output",) + path, reason))

	inputs = wire_names(descriptor.input_model)
	for name in descriptor.random_fields:
		if name not in inputs:
			problems.append(Violation(("input", name), "randomized field is not an input field"))
			continue
		info = descriptor.input_model.model_fields[inputs[name]]
		if info.is_required():
			problems.append(Violation(("input", name), "randomized field must be optional"))
		if not literal_values(info.annotation):
			problems.append(Violation(("input", name), "randomized field must be an enum"))

	for index, pair in enumerate(descriptor.safety_settings):
		if len(pair) != 2 or not all(isinstance(part, str) and part for part in pair):
			problems.append(Violation(("safetySettings", index), "expected a (category, threshold) pair"))

	follow_up = descriptor.follow_up
	if follow_up is not None:
		outputs = wire_names(descriptor.output_model)
		for name in (follow_up.trigger_field, follow_up.target_field):
			if name not in outputs:
				problems.append(Violation(("output", name), "follow-up field is not an output field"))
		target = outputs.get(follow_up.target_field)
		if target and descriptor.output_model.model_fields[target].is_required():
			problems.append(Violation(("output", follow_up.target_field), "follow-up field must be optional"))
		for reason in check_template(follow_up.template, descriptor.output_model):
			problems.append(Violation(("followUp", "template"), reason))
	return problems


class SchemaRegistry:
	"""Operation table. Populated once at startup, then frozen and shared read-only."""

	def __init__(self) -> None:
		self._operations: Dict[str, OperationDescriptor] = {}
		self._frozen = False

	def register(
		self,
		name: str,
		input_model: Type[FlowModel],
		output_model: Type[FlowModel],
		template: str,
		*,
		legacy: Sequence[LegacyShape] = (),
		post_validate: Optional[PostValidator] = None,
		random_fields: Sequence[str] = (),
		follow_up: Optional[FollowUp] = None,
		description: str = "",
		safety_settings: Sequence[Tuple[str, str]] = (),
	) -> OperationDescriptor:
		descriptor = OperationDescriptor(
			name=name,
			input_model=input_model,
			output_model=output_model,
			template=template,
			legacy=tuple(legacy),
			post_validate=post_validate,
			random_fields=tuple(random_fields),
			follow_up=follow_up,
			description=description,
			safety_settings=tuple(tuple(pair) for pair in safety_settings),
		)
		return self.add(descriptor)

	def add(self, descriptor: OperationDescriptor) -> OperationDescriptor:
		if self._frozen:
			raise MalformedSchema(f"registry is frozen; cannot register '{descriptor.name}'")
		if descriptor.name in self._operations:
			raise DuplicateOperation(f"operation '{descriptor.name}' is already registered")
		problems = check_descriptor(descriptor)
		if problems:
			raise MalformedSchema(f"operation '{descriptor.name}' is malformed", violations=problems)
		self._operations[descriptor.name] = descriptor
		logger.debug("Registered flow %s", descriptor.name)
		return descriptor

	def get(self, name: str) -> OperationDescriptor:
		try:
			return self._operations[name]
		except KeyError:
			raise UnknownOperation(f"unknown operation '{name}'") from None

	def freeze(self) -> None:
		self._frozen = True

	@property
	def frozen(self) -> bool:
		return self._frozen

	def names(self) -> List[str]:
		return sorted(self._operations)

	def __contains__(self, name: object) -> bool:
		return name in self._operations

	def __len__(self) -> int:
		return len(self._operations)

	def __iter__(self) -> Iterator[OperationDescriptor]:
		return iter(self._operations.values())
