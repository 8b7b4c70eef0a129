"""
Tests for FlowExecutor against a stub generation backend
"""
import json
import random

import pytest

from ielts_prep.flows import (
	BackendRejected,
	BackendUnavailable,
	FlowExecutor,
	GenerationError,
	GenerationMalformed,
	GenerationUnavailable,
	InvalidInput,
	MalformedOutput,
	RateLimited,
	UnknownOperation,
)


MAP_OUTPUT = {
	"topic": "<strong>The maps show the village of Chorleywood in 1990 and today.</strong>",
	"instructions": "Summarise the information by selecting and reporting the main features, and make comparisons where relevant. Write at least 150 words.",
	"taskType": "map",
	"description": "In 1990 a river ran north to south with farmland on both banks. Today the farmland east of the river is a housing estate.",
}

CHARTS = {
	"bar": {
		"type": "bar",
		"data": [{"Country": "Japan", "Visitors": 12}, {"Country": "Italy", "Visitors": 9}],
		"config": {"categoryKey": "Country", "series": ["Visitors"]},
	},
	"line": {
		"type": "line",
		"data": [{"Year": "2010", "Coal": 40, "Wind": 5}, {"Year": "2020", "Coal": 20, "Wind": 30}],
		"config": {"categoryKey": "Year", "series": ["Coal", "Wind"]},
	},
	"pie": {
		"type": "pie",
		"data": [{"Source": "Coal", "Share": 55}, {"Source": "Wind", "Share": 45}],
		"config": {"categoryKey": "Source", "dataKey": "Share"},
	},
}


def _academic_output(chart_type):
	return {
		"topic": "<strong>Electricity generation in Germany</strong>",
		"instructions": "Write at least 150 words.",
		"taskType": chart_type,
		"chartData": CHARTS[chart_type],
	}


class TestBarChartFlow:
	"""generateBarChartTopicFlow end to end"""

	@pytest.mark.asyncio
	async def test_conforming_output_is_returned_unchanged(self, executor, stub_backend, bar_chart_output):
		stub_backend.response = bar_chart_output
		result = await executor.execute("generateBarChartTopicFlow", {"topic": "salaries"})
		assert result == bar_chart_output
		assert len(stub_backend.calls) == 1
		assert "User-provided Topic: salaries" in stub_backend.calls[0]["prompt"]
		assert "chartData" in stub_backend.calls[0]["schema"]["properties"]

	@pytest.mark.asyncio
	async def test_prompt_without_topic_asks_for_random_topic(self, executor, stub_backend, bar_chart_output):
		stub_backend.response = bar_chart_output
		result = await executor.execute("generateBarChartTopicFlow", {})
		assert result == bar_chart_output
		assert len(stub_backend.calls) == 1
		prompt = stub_backend.calls[0]["prompt"]
		assert "User-provided Topic" not in prompt
		assert "random, high-quality topic" in prompt

	@pytest.mark.asyncio
	async def test_task_type_drift_is_malformed_output(self, executor, stub_backend, bar_chart_output):
		stub_backend.response = dict(bar_chart_output, taskType="line")
		with pytest.raises(MalformedOutput) as exc_info:
			await executor.execute("generateBarChartTopicFlow", {})
		assert exc_info.value.fields() == ["taskType"]

	@pytest.mark.asyncio
	async def test_rate_limit_is_backend_unavailable_without_retry(self, executor, stub_backend):
		stub_backend.error = RateLimited("quota exhausted", status_code=429, retry_after=17.0)
		with pytest.raises(BackendUnavailable) as exc_info:
			await executor.execute("generateBarChartTopicFlow", {"topic": "salaries"})
		assert exc_info.value.retry_after == 17.0
		assert exc_info.value.rate_limited
		assert "rate limit" in exc_info.value.user_message
		assert len(stub_backend.calls) == 1

		# a second invocation is a fresh single attempt with the same outcome
		with pytest.raises(BackendUnavailable) as again:
			await executor.execute("generateBarChartTopicFlow", {"topic": "salaries"})
		assert again.value.retry_after == exc_info.value.retry_after
		assert again.value.to_dict() == exc_info.value.to_dict()
		assert len(stub_backend.calls) == 2

	@pytest.mark.asyncio
	async def test_rejected_request_is_not_retryable(self, executor, stub_backend):
		stub_backend.error = GenerationError("Gemini returned HTTP 400: Invalid JSON payload", status_code=400)
		with pytest.raises(BackendRejected) as exc_info:
			await executor.execute("generateBarChartTopicFlow", {})
		assert not isinstance(exc_info.value, BackendUnavailable)
		assert exc_info.value.status_code == 400
		assert "try again" not in exc_info.value.user_message.lower()
		assert len(stub_backend.calls) == 1

	@pytest.mark.asyncio
	async def test_deeply_nested_response_is_malformed_output(self, executor, stub_backend, bar_chart_output):
		stub_backend.response = "[" * 100000
		with pytest.raises(MalformedOutput):
			await executor.execute("generateBarChartTopicFlow", {})
		stub_backend.response = dict(bar_chart_output, chartData="[" * 100000)
		with pytest.raises(MalformedOutput) as exc_info:
			await executor.execute("generateBarChartTopicFlow", {})
		assert exc_info.value.fields() == ["chartData"]

	@pytest.mark.asyncio
	async def test_transient_failure_keeps_status(self, executor, stub_backend):
		stub_backend.error = GenerationUnavailable("503 from upstream", status_code=503)
		with pytest.raises(BackendUnavailable) as exc_info:
			await executor.execute("generateBarChartTopicFlow", {})
		assert exc_info.value.status_code == 503
		assert exc_info.value.retry_after is None
		assert not exc_info.value.rate_limited

	@pytest.mark.asyncio
	async def test_unreadable_response_is_malformed_output(self, executor, stub_backend):
		stub_backend.error = GenerationMalformed("Gemini did not return valid JSON: Sorry")
		with pytest.raises(MalformedOutput):
			await executor.execute("generateBarChartTopicFlow", {})

	@pytest.mark.asyncio
	async def test_repeated_calls_give_equal_results(self, executor, stub_backend, bar_chart_output):
		stub_backend.response = bar_chart_output
		first = await executor.execute("generateBarChartTopicFlow", {"topic": "salaries"})
		second = await executor.execute("generateBarChartTopicFlow", {"topic": "salaries"})
		assert first == second
		assert first is not second
		assert stub_backend.calls[0]["prompt"] == stub_backend.calls[1]["prompt"]

	@pytest.mark.asyncio
	async def test_row_missing_series_key_fails_post_validation(self, executor, stub_backend, bar_chart_output):
		del bar_chart_output["chartData"]["data"][1]["Salary"]
		stub_backend.response = bar_chart_output
		with pytest.raises(MalformedOutput) as exc_info:
			await executor.execute("generateBarChartTopicFlow", {})
		assert exc_info.value.fields() == ["chartData.data.1"]

	@pytest.mark.asyncio
	async def test_legacy_raw_data_string_is_reconciled(self, executor, stub_backend, bar_chart_output):
		chart = bar_chart_output.pop("chartData")
		config = chart["config"]
		chart["config"] = {"categoryKey": config["categoryKey"], "dataKey": "Salary"}
		stub_backend.response = dict(bar_chart_output, rawData=json.dumps(chart))
		result = await executor.execute("generateBarChartTopicFlow", {})
		assert "rawData" not in result
		assert result["chartData"]["config"] == {"categoryKey": "Profession", "series": ["Salary"], "dataKey": "Salary"}
		assert result["chartData"]["data"] == chart["data"]


class TestInvocationErrors:
	@pytest.mark.asyncio
	async def test_unknown_operation(self, executor, stub_backend):
		with pytest.raises(UnknownOperation):
			await executor.execute("generatePodcastFlow", {})
		assert stub_backend.calls == []

	@pytest.mark.asyncio
	async def test_invalid_input_names_field(self, executor, stub_backend):
		with pytest.raises(InvalidInput) as exc_info:
			await executor.execute("generatePracticeQuestionFlow", {"questionType": "reading-comprehension", "trainingType": "Expert"})
		assert exc_info.value.fields() == ["trainingType"]
		assert stub_backend.calls == []

	@pytest.mark.asyncio
	async def test_essay_too_short(self, executor, stub_backend):
		with pytest.raises(InvalidInput) as exc_info:
			await executor.execute("essayFeedbackFlow", {"topic": "Cities", "essay": "Too short."})
		assert exc_info.value.fields() == ["essay"]

	@pytest.mark.asyncio
	async def test_non_object_output_is_malformed(self, executor, stub_backend):
		stub_backend.response = ["not", "an", "object"]
		with pytest.raises(MalformedOutput):
			await executor.execute("generateWritingTask2Flow", {})


class TestAcademicTask1Flow:
	@pytest.mark.asyncio
	async def test_random_chart_type_when_absent(self, registry, stub_backend):
		expected = random.Random(3).choice(("bar", "line", "pie"))
		stub_backend.response = _academic_output(expected)
		executor = FlowExecutor(registry, stub_backend, rng=random.Random(3))
		result = await executor.execute("generateWritingTask1AcademicFlow", {})
		assert result["chartData"]["type"] == expected
		assert f"built around a {expected} chart" in stub_backend.calls[0]["prompt"]

	@pytest.mark.asyncio
	async def test_requested_chart_type_is_used(self, executor, stub_backend):
		stub_backend.response = _academic_output("pie")
		result = await executor.execute("generateWritingTask1AcademicFlow", {"chartType": "pie", "topic": "energy"})
		assert result["chartData"] == CHARTS["pie"]
		assert "built around a pie chart" in stub_backend.calls[0]["prompt"]

	@pytest.mark.asyncio
	async def test_chart_other_than_requested_is_malformed(self, executor, stub_backend):
		stub_backend.response = _academic_output("bar")
		with pytest.raises(MalformedOutput) as exc_info:
			await executor.execute("generateWritingTask1AcademicFlow", {"chartType": "line"})
		assert exc_info.value.fields() == ["chartData.type"]

	@pytest.mark.asyncio
	async def test_task_type_must_match_chart(self, executor, stub_backend):
		stub_backend.response = dict(_academic_output("line"), taskType="bar")
		with pytest.raises(MalformedOutput) as exc_info:
			await executor.execute("generateWritingTask1AcademicFlow", {"chartType": "line"})
		assert exc_info.value.fields() == ["taskType"]

	@pytest.mark.asyncio
	async def test_missing_task_type_is_taken_from_chart(self, executor, stub_backend):
		output = _academic_output("line")
		del output["taskType"]
		stub_backend.response = output
		result = await executor.execute("generateWritingTask1AcademicFlow", {"chartType": "line"})
		assert result["taskType"] == "line"


class TestMapFlow:
	"""Composite flow: text first, then a best-effort image"""

	@pytest.mark.asyncio
	async def test_image_is_attached(self, executor, stub_backend):
		stub_backend.response = MAP_OUTPUT
		stub_backend.image = "data:image/png;base64,iVBORw0KGgo="
		result = await executor.execute("generateMapTopicFlow", {})
		assert result["imageDataUri"] == "data:image/png;base64,iVBORw0KGgo="
		assert MAP_OUTPUT["description"] in stub_backend.image_calls[0]
		assert "imageDataUri" not in stub_backend.calls[0]["schema"]["properties"]

	@pytest.mark.asyncio
	async def test_image_failure_returns_primary_result(self, executor, stub_backend):
		stub_backend.response = MAP_OUTPUT
		stub_backend.image_error = GenerationUnavailable("image model overloaded", status_code=503)
		result = await executor.execute("generateMapTopicFlow", {})
		assert result == MAP_OUTPUT
		assert "imageDataUri" not in result

	@pytest.mark.asyncio
	async def test_no_description_skips_image_step(self, executor, stub_backend):
		output = {k: v for k, v in MAP_OUTPUT.items() if k != "description"}
		stub_backend.response = output
		stub_backend.image_error = GenerationUnavailable("image model overloaded")
		result = await executor.execute("generateMapTopicFlow", {"topic": "a harbour"})
		assert result == output
		assert stub_backend.image_calls == []

	@pytest.mark.asyncio
	async def test_model_supplied_image_is_discarded(self, executor, stub_backend):
		stub_backend.response = dict(MAP_OUTPUT, imageDataUri="https://example.com/made-up.png")
		stub_backend.image_error = GenerationUnavailable("image model overloaded")
		result = await executor.execute("generateMapTopicFlow", {})
		assert "imageDataUri" not in result


def _question(number, qtype="short-answer"):
	return {"questionNumber": number, "questionText": f"Question {number}", "questionType": qtype, "answer": "bees"}


class TestReadingFlows:
	@pytest.mark.asyncio
	async def test_flat_questions_become_one_group(self, executor, stub_backend):
		stub_backend.response = {
			"passages": [
				{"passageNumber": 1, "passageText": "Bees...", "questions": [_question(1), _question(2, "TRUE-FALSE-NOT-GIVEN")]},
			]
		}
		result = await executor.execute("generatePracticeQuestionFlow", {"questionType": "reading-comprehension", "trainingType": "Academic"})
		groups = result["passages"][0]["questionGroups"]
		assert len(groups) == 1
		assert [q["questionNumber"] for q in groups[0]["questions"]] == [1, 2]
		assert groups[0]["questions"][1]["questionType"] == "true-false-not-given"

	@pytest.mark.asyncio
	async def test_practice_test_sends_its_safety_thresholds(self, executor, stub_backend, bar_chart_output):
		stub_backend.response = {"passages": [{"passageNumber": 1, "passageText": "Bees...", "questions": [_question(1)]}]}
		await executor.execute("generatePracticeQuestionFlow", {"questionType": "reading-comprehension", "trainingType": "Academic"})
		assert dict(stub_backend.calls[0]["safety_settings"]) == {
			"HARM_CATEGORY_HATE_SPEECH": "BLOCK_ONLY_HIGH",
			"HARM_CATEGORY_DANGEROUS_CONTENT": "BLOCK_NONE",
			"HARM_CATEGORY_HARASSMENT": "BLOCK_MEDIUM_AND_ABOVE",
			"HARM_CATEGORY_SEXUALLY_EXPLICIT": "BLOCK_LOW_AND_ABOVE",
		}

		stub_backend.response = bar_chart_output
		await executor.execute("generateBarChartTopicFlow", {})
		assert stub_backend.calls[1]["safety_settings"] == ()

	@pytest.mark.asyncio
	async def test_duplicate_question_numbers_are_malformed(self, executor, stub_backend):
		stub_backend.response = {
			"passages": [
				{"passageNumber": 1, "passageText": "Bees...", "questionGroups": [{"questions": [_question(1), _question(2)]}]},
				{"passageNumber": 2, "passageText": "Ants...", "questionGroups": [{"questions": [_question(2)]}]},
			]
		}
		with pytest.raises(MalformedOutput) as exc_info:
			await executor.execute("generatePracticeQuestionFlow", {"questionType": "reading-comprehension", "trainingType": "General Training"})
		assert exc_info.value.fields() == ["passages.1.questionGroups.0.questions.0.questionNumber"]

	@pytest.mark.asyncio
	async def test_feedback_count_must_match_questions(self, executor, stub_backend):
		qa = {"questionText": "Q1:", "userAnswer": "Not answered", "correctAnswer": "pollination"}
		stub_backend.response = {"feedback": []}
		with pytest.raises(MalformedOutput):
			await executor.execute("readingFeedbackFlow", {"passage": "Bees...", "questionsAndAnswers": [qa]})
		item = dict(qa, isCorrect=False, explanation="The second paragraph says bees pollinate crops.")
		stub_backend.response = {"feedback": [item]}
		result = await executor.execute("readingFeedbackFlow", {"passage": "Bees...", "questionsAndAnswers": [qa]})
		assert result["feedback"] == [item]
