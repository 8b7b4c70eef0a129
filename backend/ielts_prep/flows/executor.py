from __future__ import annotations
import logging
import random
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel

from .backend import GenerationBackend, GenerationError, GenerationMalformed, GenerationUnavailable, RateLimited
from .errors import BackendRejected, BackendUnavailable, InvalidInput, MalformedOutput, Violation
from .registry import OperationDescriptor, SchemaRegistry, validate_against
from .shapes import unwrap_json
from .templates import render_prompt

logger = logging.getLogger(__name__)


class FlowExecutor:
	"""Runs one named operation end to end against a generation backend.

	The executor keeps no per-call state: every ``execute`` builds its own
	prompt context and result. It calls the backend exactly once per
	invocation (plus the optional follow-up step) and never retries.
	"""

	def __init__(self, registry: SchemaRegistry, backend: GenerationBackend, *, rng: Optional[random.Random] = None) -> None:
		self.registry = registry
		self.backend = backend
		self._rng = rng or random.Random()

	async def execute(self, operation_name: str, input: Union[Mapping[str, Any], BaseModel, None] = None) -> Dict[str, Any]:
		descriptor = self.registry.get(operation_name)
		context = self._prepare_context(descriptor, input)
		prompt = render_prompt(descriptor.template, context)

		try:
			candidate = await self.backend.generate_structured(
				prompt, descriptor.response_schema(), safety_settings=descriptor.safety_settings
			)
		except GenerationMalformed as exc:
			logger.warning("%s: unreadable backend response: %s", operation_name, exc)
			raise MalformedOutput(
				f"'{operation_name}' returned a response that is not structured data",
				violations=[Violation((), str(exc))],
			) from exc
		except GenerationUnavailable as exc:
			logger.warning("%s: backend unavailable (status=%s): %s", operation_name, exc.status_code, exc)
			raise BackendUnavailable(
				f"generation backend failed for '{operation_name}': {exc}",
				retry_after=exc.retry_after,
				status_code=exc.status_code,
				rate_limited=isinstance(exc, RateLimited),
			) from exc
		except GenerationError as exc:
			# bad key, bad request or unknown model: retrying will not help
			logger.error("%s: backend rejected the request (status=%s): %s", operation_name, exc.status_code, exc)
			raise BackendRejected(
				f"generation backend rejected the request for '{operation_name}': {exc}",
				status_code=exc.status_code,
			) from exc

		output = self._reconcile(descriptor, candidate)
		if descriptor.post_validate is not None:
			problems = descriptor.post_validate(context, output)
			if problems:
				logger.warning("%s: output failed post-validation: %s", operation_name, "; ".join(map(str, problems)))
				raise MalformedOutput(f"'{operation_name}' output failed its consistency checks", violations=problems)
		if descriptor.follow_up is not None:
			output = await self._follow_up(descriptor, output)
		return output

	def _prepare_context(self, descriptor: OperationDescriptor, input: Union[Mapping[str, Any], BaseModel, None]) -> Dict[str, Any]:
		if isinstance(input, BaseModel):
			input = input.model_dump(by_alias=True, exclude_none=True)
		checked = validate_against(descriptor.input_model, {} if input is None else input)
		if not checked.ok:
			raise InvalidInput(f"input for '{descriptor.name}' is invalid", violations=checked.violations)
		context = dict(checked.value)
		for field, values in descriptor.random_choices().items():
			if not context.get(field):
				context[field] = self._rng.choice(values)
				logger.info("%s: picked %s=%s", descriptor.name, field, context[field])
		logger.info("Executing %s with fields %s", descriptor.name, sorted(context))
		return context

	def _reconcile(self, descriptor: OperationDescriptor, candidate: Any) -> Dict[str, Any]:
		candidate = unwrap_json(candidate)
		if isinstance(candidate, dict) and descriptor.follow_up is not None:
			candidate = {k: v for k, v in candidate.items() if k != descriptor.follow_up.target_field}

		outcome = validate_against(descriptor.output_model, candidate)
		if outcome.ok:
			return outcome.value
		if isinstance(candidate, dict):
			# legacy rules apply cumulatively, in declaration order
			current = candidate
			for shape in descriptor.legacy:
				reconciled = shape.reconcile(current)
				if reconciled is None:
					continue
				current = reconciled
				legacy_outcome = validate_against(descriptor.output_model, current)
				if legacy_outcome.ok:
					logger.info("%s: reconciled legacy output shape '%s'", descriptor.name, shape.name)
					return legacy_outcome.value
		logger.warning(
			"%s: malformed output: %s", descriptor.name, "; ".join(str(v) for v in outcome.violations)
		)
		raise MalformedOutput(f"'{descriptor.name}' output does not match its schema", violations=outcome.violations)

	async def _follow_up(self, descriptor: OperationDescriptor, output: Dict[str, Any]) -> Dict[str, Any]:
		follow_up = descriptor.follow_up
		if not output.get(follow_up.trigger_field):
			return output
		prompt = render_prompt(follow_up.template, output)
		try:
			result = await self.backend.generate_image(prompt)
		except GenerationError as exc:
			# partial success: the follow-up field is optional
			logger.warning("%s: follow-up step failed, returning primary result: %s", descriptor.name, exc)
			return output
		if isinstance(result, str) and result:
			output[follow_up.target_field] = result
		return output
