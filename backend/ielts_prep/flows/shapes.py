"""
Building blocks for flow input and output schemas.

Flow schemas are pydantic models deriving from ``FlowModel``. On top of plain
pydantic types this module adds the few things LLM output needs:

- ``choice(...)``: an enum that accepts any casing of its values.
- ``Markup``: free text that holds HTML. Opaque here; escaping is the
  renderer's job.
- ``tagged_union(...)``: a discriminated union selected by a literal tag field,
  with case-insensitive tag matching.
- stringified JSON where an object is declared is unwrapped before validation.
"""

from __future__ import annotations
import json
import types
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Tuple, Type, Union, get_args, get_origin

from pydantic import BaseModel, BeforeValidator, ConfigDict, Discriminator, Field, Tag, model_validator
from pydantic.alias_generators import to_camel
from pydantic.fields import FieldInfo


def unwrap_json(value: Any) -> Any:
	"""Return the parsed object when ``value`` is a string holding a JSON object or array."""
	if not isinstance(value, str):
		return value
	text = value.strip()
	if not text or text[0] not in "{[":
		return value
	try:
		return json.loads(text)
	except (ValueError, RecursionError):
		return value


class FlowModel(BaseModel):
	# camelCase on the wire, surplus keys dropped, numbers accepted where text is declared
	model_config = ConfigDict(
		alias_generator=to_camel,
		populate_by_name=True,
		extra="ignore",
		coerce_numbers_to_str=True,
	)

	@model_validator(mode="before")
	@classmethod
	def _unwrap_stringified(cls, data: Any) -> Any:
		return unwrap_json(data)


Markup = Annotated[str, Field(description="HTML-formatted text.")]

Scalar = Union[str, int, float]


def _case_folder(values: Tuple[str, ...]):
	canonical = {v.lower(): v for v in values}

	def fold(value: Any) -> Any:
		if isinstance(value, str):
			return canonical.get(value.strip().lower(), value)
		return value

	return fold


def choice(*values: str) -> Any:
	"""Literal of ``values`` that also accepts them in any casing."""
	return Annotated[Literal[values], BeforeValidator(_case_folder(values))]


def tagged_union(*branches: Type[BaseModel], tag: str = "type") -> Any:
	"""Discriminated union of ``branches`` selected by their literal ``tag`` field.

	Each branch must declare ``tag`` as a single-valued ``Literal``. Tags are
	matched case-insensitively; an unknown or missing tag is reported on the tag
	field itself.
	"""
	if len(branches) < 2:
		raise ValueError("a tagged union needs at least two branches")
	tagged = []
	canonical: Dict[str, str] = {}
	for branch in branches:
		field = branch.model_fields.get(tag)
		values = literal_values(field.annotation) if field else ()
		if len(values) != 1:
			raise ValueError(f"{branch.__name__}.{tag} must be a single-valued Literal")
		canonical.setdefault(values[0].lower(), values[0])
		tagged.append(Annotated[branch, Tag(values[0])])

	def pick(value: Any) -> Optional[str]:
		value = unwrap_json(value)
		if isinstance(value, dict):
			raw = value.get(tag)
		else:
			raw = getattr(value, tag, None)
		if not isinstance(raw, str):
			return None
		return canonical.get(raw.strip().lower(), raw)

	expected = ", ".join(repr(v) for v in canonical.values())
	return Annotated[
		Union[tuple(tagged)],
		Discriminator(
			pick,
			custom_error_type="invalid_tag",
			custom_error_message=f"'{tag}' should be one of {expected}",
			custom_error_context={"discriminator": tag},
		),
	]


def _is_union(annotation: Any) -> bool:
	return get_origin(annotation) in (Union, types.UnionType)


def literal_values(annotation: Any) -> Tuple[str, ...]:
	"""Values of a (possibly Optional or Annotated) ``Literal`` annotation; empty if it is not one."""
	origin = get_origin(annotation)
	if origin is Annotated:
		return literal_values(get_args(annotation)[0])
	if _is_union(annotation):
		args = [a for a in get_args(annotation) if a is not type(None)]
		return literal_values(args[0]) if len(args) == 1 else ()
	if origin is Literal:
		return tuple(str(v) for v in get_args(annotation))
	return ()


def wire_names(model: Type[BaseModel]) -> Dict[str, str]:
	"""Map of wire name (alias) to python attribute name."""
	generator = model.model_config.get("alias_generator")
	names: Dict[str, str] = {}
	for name, field in model.model_fields.items():
		alias = field.alias
		if alias is None and callable(generator):
			alias = generator(name)
		names[alias or name] = name
	return names


def list_item_model(annotation: Any) -> Optional[Type[BaseModel]]:
	"""Model of the items of a ``List[Model]`` (or ``Optional[List[Model]]``) annotation."""
	if get_origin(annotation) is Annotated:
		return list_item_model(get_args(annotation)[0])
	if _is_union(annotation):
		args = [a for a in get_args(annotation) if a is not type(None)]
		return list_item_model(args[0]) if len(args) == 1 else None
	if get_origin(annotation) in (list, List):
		args = get_args(annotation)
		if args and isinstance(args[0], type) and issubclass(args[0], BaseModel):
			return args[0]
	return None


def duplicate_tags(model: Type[BaseModel]) -> List[Tuple[Tuple[str, ...], str]]:
	"""Find discriminated unions inside ``model`` whose branches share a tag value."""
	problems: List[Tuple[Tuple[str, ...], str]] = []
	_walk_unions(model, None, (), set(), problems)
	return problems


def _tag_field(discriminator: Any) -> Optional[str]:
	if isinstance(discriminator, str):
		return discriminator
	if isinstance(discriminator, Discriminator):
		return (discriminator.custom_error_context or {}).get("discriminator")
	return None


def _branch_tags(branch: Any, tag_field: str) -> Tuple[Optional[type], Tuple[str, ...]]:
	# Annotated[Model, Tag("x")] carries its tag explicitly; a bare model relies on its literal field
	if get_origin(branch) is Annotated:
		model, *metadata = get_args(branch)
		tags = tuple(str(item.tag) for item in metadata if isinstance(item, Tag))
		if tags:
			return model, tags
		branch = model
	if isinstance(branch, type) and issubclass(branch, BaseModel):
		field = branch.model_fields.get(tag_field)
		return branch, literal_values(field.annotation) if field else ()
	return None, ()


def _walk_unions(
	annotation: Any,
	discriminator: Any,
	path: Tuple[str, ...],
	seen: Set[type],
	problems: List[Tuple[Tuple[str, ...], str]],
) -> None:
	origin = get_origin(annotation)
	if origin is Annotated:
		base, *metadata = get_args(annotation)
		for item in metadata:
			if isinstance(item, Discriminator):
				discriminator = item
			elif isinstance(item, FieldInfo) and item.discriminator is not None:
				discriminator = item.discriminator
		_walk_unions(base, discriminator, path, seen, problems)
		return
	if _is_union(annotation):
		branches = [a for a in get_args(annotation) if a is not type(None)]
		tag_field = _tag_field(discriminator)
		if tag_field:
			owners: Dict[str, str] = {}
			for branch in branches:
				model, tags = _branch_tags(branch, tag_field)
				if model is None:
					continue
				for value in tags:
					if value in owners:
						problems.append(
							(path + (tag_field,), f"tag {value!r} is used by both {owners[value]} and {model.__name__}")
						)
					else:
						owners[value] = model.__name__
		for branch in branches:
			_walk_unions(branch, None, path, seen, problems)
		return
	if origin is not None:
		for arg in get_args(annotation):
			_walk_unions(arg, None, path, seen, problems)
		return
	if isinstance(annotation, type) and issubclass(annotation, BaseModel):
		if annotation in seen:
			return
		seen.add(annotation)
		aliases = {name: alias for alias, name in wire_names(annotation).items()}
		for name, field in annotation.model_fields.items():
			discriminator = field.discriminator
			if discriminator is None:
				discriminator = next((m for m in field.metadata if isinstance(m, Discriminator)), None)
			_walk_unions(field.annotation, discriminator, path + (aliases[name],), seen, problems)
