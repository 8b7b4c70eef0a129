from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends

from ..deps import get_executor
from ..flows import FlowExecutor, OperationDescriptor, get_registry
from ..flows.templates import referenced_fields

router = APIRouter(prefix="/flows", tags=["flows"])


@router.get("")
async def list_flows() -> List[Dict[str, Any]]:
	flows = []
	for descriptor in get_registry():
		flows.append(
			{
				"name": descriptor.name,
				"description": descriptor.description,
				"input_schema": descriptor.input_model.model_json_schema(by_alias=True),
				"output_schema": descriptor.response_schema(),
				"template_fields": referenced_fields(descriptor.template),
				"random_fields": {k: list(v) for k, v in descriptor.random_choices().items()},
				"legacy_shapes": [shape.name for shape in descriptor.legacy],
				"composite": descriptor.follow_up is not None,
			}
		)
	return flows


def known_flow(operation_name: str) -> OperationDescriptor:
	# declared ahead of get_executor so an unknown name is a 404 even without a backend
	return get_registry().get(operation_name)


@router.post("/{operation_name}")
async def run_flow(
	descriptor: OperationDescriptor = Depends(known_flow),
	payload: Optional[Dict[str, Any]] = Body(default=None),
	executor: FlowExecutor = Depends(get_executor),
) -> Dict[str, Any]:
	return await executor.execute(descriptor.name, payload)
