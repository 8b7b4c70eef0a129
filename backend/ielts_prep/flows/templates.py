"""
Prompt templates.

Templates use a deliberately small subset of Jinja2 so they can be checked
against the input schema before anything runs:

- ``{{ field }}`` substitutes an input field,
- ``{% if field %}...{% else %}...{% endif %}`` includes a section only when
  the field is present and non-empty,
- ``{% for item in field %}...{% endfor %}`` repeats a section for each entry
  of a list field, with ``{{ item.key }}`` reading the entry.

Filters, tests, calls, operators, macros, ``set`` and the rest of Jinja are
rejected at registration time.
"""

from __future__ import annotations
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Type

from jinja2 import Environment, Template, TemplateSyntaxError, nodes
from pydantic import BaseModel

from .shapes import list_item_model, wire_names

_env = Environment(autoescape=False, keep_trailing_newline=True, trim_blocks=True, lstrip_blocks=True)

_PLAIN_NODES = (nodes.Template, nodes.Output, nodes.TemplateData)


def check_template(source: str, model: Type[BaseModel]) -> List[str]:
	"""Return the problems found in ``source`` when checked against ``model``'s fields."""
	try:
		ast = _env.parse(source)
	except TemplateSyntaxError as exc:
		return [f"line {exc.lineno}: {exc.message}"]
	problems: List[str] = []
	_check(ast, _fields_of(model), {}, problems)
	return problems


def referenced_fields(source: str) -> List[str]:
	"""Top-level field names a template reads, in order of first use."""
	ast = _env.parse(source)
	names: List[str] = []
	loop_vars = {n.target.name for n in ast.find_all(nodes.For) if isinstance(n.target, nodes.Name)}
	for node in ast.find_all(nodes.Name):
		if node.ctx == "load" and node.name not in loop_vars and node.name not in names:
			names.append(node.name)
	return names


def render_prompt(source: str, context: Mapping[str, Any]) -> str:
	return _compile(source).render(**context)


@lru_cache(maxsize=None)
def _compile(source: str) -> Template:
	return _env.from_string(source)


def _fields_of(model: Optional[Type[BaseModel]]) -> Dict[str, Optional[Type[BaseModel]]]:
	if model is None:
		return {}
	return {
		alias: list_item_model(model.model_fields[name].annotation)
		for alias, name in wire_names(model).items()
	}


def _check(
	node: nodes.Node,
	fields: Dict[str, Optional[Type[BaseModel]]],
	loop_vars: Dict[str, Optional[Type[BaseModel]]],
	problems: List[str],
) -> None:
	where = f"line {node.lineno}"
	if isinstance(node, nodes.For):
		if (
			not isinstance(node.target, nodes.Name)
			or not isinstance(node.iter, nodes.Name)
			or node.test is not None
			or node.recursive
			or node.else_
		):
			problems.append(f"{where}: loops must be written as 'for item in field'")
			return
		field = node.iter.name
		if field not in fields:
			problems.append(f"{where}: unknown field '{field}'")
		scope = {**loop_vars, node.target.name: fields.get(field)}
		for child in node.body:
			_check(child, fields, scope, problems)
		return
	if isinstance(node, nodes.If):
		if not isinstance(node.test, (nodes.Name, nodes.Getattr)):
			problems.append(f"{where}: conditions may only test whether a field is present")
		else:
			_check(node.test, fields, loop_vars, problems)
		for child in node.body + node.elif_ + node.else_:
			_check(child, fields, loop_vars, problems)
		return
	if isinstance(node, nodes.Name):
		if node.name not in fields and node.name not in loop_vars:
			problems.append(f"{where}: unknown field '{node.name}'")
		return
	if isinstance(node, nodes.Getattr):
		if not isinstance(node.node, nodes.Name) or node.node.name not in loop_vars:
			problems.append(f"{where}: attribute access is only allowed on loop items")
			return
		item_model = loop_vars[node.node.name]
		if item_model is not None and node.attr not in wire_names(item_model):
			problems.append(f"{where}: unknown field '{node.node.name}.{node.attr}'")
		return
	if not isinstance(node, _PLAIN_NODES):
		problems.append(f"{where}: '{type(node).__name__}' is not allowed in prompt templates")
		return
	for child in node.iter_child_nodes():
		_check(child, fields, loop_vars, problems)
