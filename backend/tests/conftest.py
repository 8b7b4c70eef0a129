"""
Pytest configuration and fixtures
"""
import copy
import random
from typing import Any, Dict, List, Optional

import pytest

from ielts_prep.flows import FlowExecutor, build_registry


class StubBackend:
	"""Generation backend that replays canned answers and records every call."""

	def __init__(self, response: Any = None, *, error: Optional[Exception] = None, image: Any = None, image_error: Optional[Exception] = None):
		self.response = response
		self.error = error
		self.image = image
		self.image_error = image_error
		self.calls: List[Dict[str, Any]] = []
		self.image_calls: List[str] = []

	async def generate_structured(self, prompt: str, response_schema: Dict[str, Any], *, safety_settings=()) -> Any:
		self.calls.append({"prompt": prompt, "schema": response_schema, "safety_settings": tuple(safety_settings)})
		if self.error is not None:
			raise self.error
		# hand out a copy so the executor can never mutate the canned answer
		return copy.deepcopy(self.response)

	async def generate_image(self, prompt: str) -> str:
		self.image_calls.append(prompt)
		if self.image_error is not None:
			raise self.image_error
		return self.image


@pytest.fixture(scope="session")
def registry():
	return build_registry()


@pytest.fixture
def stub_backend():
	return StubBackend()


@pytest.fixture
def executor(registry, stub_backend):
	return FlowExecutor(registry, stub_backend, rng=random.Random(7))


@pytest.fixture
def bar_chart_output() -> Dict[str, Any]:
	return {
		"topic": "<strong>The bar chart shows average annual salaries for four professions in the UK in 2022.</strong>",
		"instructions": "Summarise the information by selecting and reporting the main features, and make comparisons where relevant. Write at least 150 words.",
		"taskType": "bar",
		"chartData": {
			"type": "bar",
			"data": [
				{"Profession": "Teachers", "Salary": 45000},
				{"Profession": "Doctors", "Salary": 75000},
				{"Profession": "Engineers", "Salary": 68000},
				{"Profession": "Nurses", "Salary": 52000},
			],
			"config": {
				"categoryKey": "Profession",
				"series": ["Salary"],
				"xAxisLabel": "Profession",
				"yAxisLabel": "Average Annual Salary (GBP)",
			},
		},
	}
