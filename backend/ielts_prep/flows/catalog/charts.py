"""
IELTS Writing Task 1 (Academic) chart flows.

Each flow asks for an exam prompt plus the data needed to draw its chart.
Earlier versions of these flows returned the chart as a JSON string in
``rawData`` and described single-series charts with ``dataKey`` only; both
shapes are still reconciled.
"""

from typing import Any, Dict, List, Mapping, Optional

from pydantic import Field

from ..errors import Violation
from ..registry import LegacyShape, SchemaRegistry
from ..shapes import FlowModel, Markup, Scalar, choice, tagged_union, unwrap_json

TASK1_INSTRUCTIONS = (
	"Summarise the information by selecting and reporting the main features, "
	"and make comparisons where relevant. Write at least 150 words."
)


class TopicRequest(FlowModel):
	topic: Optional[str] = Field(default=None, description="An optional user-provided topic or keywords.")


class SeriesConfig(FlowModel):
	category_key: str = Field(description="Key in each data row holding the category or x-axis label.")
	series: List[str] = Field(min_length=1, description="Keys in each data row holding the plotted values.")
	data_key: Optional[str] = None
	x_axis_label: Optional[str] = None
	y_axis_label: Optional[str] = None


class PieConfig(FlowModel):
	category_key: str
	data_key: str = Field(description="Key in each data row holding the slice value.")
	series: Optional[List[str]] = None


class BarChart(FlowModel):
	type: choice("bar")
	data: List[Dict[str, Scalar]] = Field(min_length=1)
	config: SeriesConfig


class LineChart(FlowModel):
	type: choice("line")
	data: List[Dict[str, Scalar]] = Field(min_length=1)
	config: SeriesConfig


class PieChart(FlowModel):
	type: choice("pie")
	data: List[Dict[str, Scalar]] = Field(min_length=1)
	config: PieConfig


ChartData = tagged_union(BarChart, LineChart, PieChart)


class BarChartTopic(FlowModel):
	topic: Markup
	instructions: Markup
	task_type: choice("bar")
	chart_data: BarChart


class LineChartTopic(FlowModel):
	topic: Markup
	instructions: Markup
	task_type: choice("line")
	chart_data: LineChart


class AcademicTask1Request(FlowModel):
	topic: Optional[str] = Field(default=None, description="An optional user-provided topic or keywords.")
	chart_type: Optional[choice("bar", "line", "pie")] = None


class AcademicTask1Topic(FlowModel):
	topic: Markup
	instructions: Markup
	task_type: choice("bar", "line", "pie")
	chart_data: ChartData


# ---- legacy reconciliation ----

def _raw_data_string(candidate: Dict[str, Any]) -> Optional[Dict[str, Any]]:
	if "chartData" in candidate or not isinstance(candidate.get("rawData"), str):
		return None
	parsed = unwrap_json(candidate["rawData"])
	if not isinstance(parsed, dict):
		return None
	reconciled = {k: v for k, v in candidate.items() if k != "rawData"}
	reconciled["chartData"] = parsed
	return reconciled


def _single_data_key(candidate: Dict[str, Any]) -> Optional[Dict[str, Any]]:
	chart = unwrap_json(candidate.get("chartData"))
	if not isinstance(chart, dict) or str(chart.get("type", "")).lower() == "pie":
		return None
	config = unwrap_json(chart.get("config"))
	if not isinstance(config, dict) or config.get("series") or not isinstance(config.get("dataKey"), str):
		return None
	chart = {**chart, "config": {**config, "series": [config["dataKey"]]}}
	return {**candidate, "chartData": chart}


def _task_type_from_chart(candidate: Dict[str, Any]) -> Optional[Dict[str, Any]]:
	chart = unwrap_json(candidate.get("chartData"))
	if candidate.get("taskType") or not isinstance(chart, dict) or not isinstance(chart.get("type"), str):
		return None
	return {**candidate, "taskType": chart["type"]}


RAW_DATA_STRING = LegacyShape("rawData string", _raw_data_string)
SINGLE_DATA_KEY = LegacyShape("dataKey without series", _single_data_key)
TASK_TYPE_FROM_CHART = LegacyShape("taskType missing", _task_type_from_chart)


# ---- post-validation ----

def chart_rows_problems(chart: Mapping[str, Any], *, min_series: int = 1) -> List[Violation]:
	"""Every data row must carry the category key and a value for every series."""
	problems: List[Violation] = []
	config = chart.get("config") or {}
	keys = list(config.get("series") or [])
	if chart.get("type") == "pie":
		keys = [config.get("dataKey")]
	elif len(keys) < min_series:
		problems.append(Violation(("chartData", "config", "series"), f"expected at least {min_series} series, got {len(keys)}"))
	category_key = config.get("categoryKey")
	for index, row in enumerate(chart.get("data") or []):
		missing = [k for k in [category_key] + keys if k not in row]
		if missing:
			problems.append(Violation(("chartData", "data", index), f"row is missing {', '.join(map(str, missing))}"))
	return problems


def _chart_checks(min_series: int = 1):
	def check(inputs: Mapping[str, Any], output: Mapping[str, Any]) -> List[Violation]:
		return chart_rows_problems(output.get("chartData") or {}, min_series=min_series)

	return check


def _academic_checks(inputs: Mapping[str, Any], output: Mapping[str, Any]) -> List[Violation]:
	chart = output.get("chartData") or {}
	problems = chart_rows_problems(chart)
	if output.get("taskType") != chart.get("type"):
		problems.append(Violation(("taskType",), f"'{output.get('taskType')}' does not match chartData.type '{chart.get('type')}'"))
	requested = inputs.get("chartType")
	if requested and chart.get("type") != requested:
		problems.append(Violation(("chartData", "type"), f"requested a {requested} chart, got '{chart.get('type')}'"))
	return problems


_TOPIC_CHOICE = """{% if topic %}
User-provided Topic: {{ topic }}
Please create a prompt related to this topic.
{% else %}
Please generate a random, high-quality topic appropriate for an IELTS exam.
{% endif %}
"""

_RESPONSE_RULES = f"""
**Response Instructions:**
- The 'topic' field MUST be a bold HTML string (wrapped in <strong> tags) describing the visual.
- The 'instructions' field should always be exactly "{TASK1_INSTRUCTIONS}"
- The 'chartData' field MUST be a JSON object with 'type', 'data' and 'config'.
- Every object in 'data' MUST contain the 'categoryKey' and every key listed in 'series'. Do NOT return empty objects or placeholder values.
"""

BAR_CHART_TEMPLATE = (
	"""You are an expert IELTS exam creator. Your task is to generate a complete writing prompt for IELTS Writing Task 1 (Academic) that involves a bar chart comparing several categories.

"""
	+ _TOPIC_CHOICE
	+ """
**CRITICAL REQUIREMENTS:**
- 'chartData.type' MUST be "bar" and 'taskType' MUST be exactly "bar".
- The topic must be varied. Choose from a diverse range of subjects like economics (e.g., average salaries for different professions), environment (e.g., waste recycling rates by material), social trends (e.g., preferred holiday destinations), or technology (e.g., percentage of people using different social media platforms).
- The prompt MUST be specific and compare different items in a single category. Invent a realistic context, including a specific country, city, or year (e.g., "in the UK in 2022", "in the city of Sydney").
- Generate a random number of categories to compare, between 4 and 6.
- Data MUST be realistic.
"""
	+ _RESPONSE_RULES
	+ """
**Example 'chartData':**
{"type": "bar", "data": [{"Profession": "Teachers", "Salary": 45000}, {"Profession": "Doctors", "Salary": 75000}, {"Profession": "Engineers", "Salary": 68000}, {"Profession": "Nurses", "Salary": 52000}], "config": {"categoryKey": "Profession", "series": ["Salary"], "xAxisLabel": "Profession", "yAxisLabel": "Average Annual Salary (USD)"}}

Your entire response must be a single JSON object that strictly follows the output schema.
"""
)

LINE_CHART_TEMPLATE = (
	"""You are an expert IELTS exam creator. Your task is to generate a complete writing prompt for IELTS Writing Task 1 (Academic) that involves a multi-line chart comparing several categories over time.

"""
	+ _TOPIC_CHOICE
	+ """
**CRITICAL REQUIREMENTS:**
- 'chartData.type' MUST be "line" and 'taskType' MUST be exactly "line".
- The topic must be varied, e.g. unemployment rates, CO2 emissions from different sectors, average house prices in different cities, international tourism numbers, mobile phone subscriptions vs. landlines.
- Invent a realistic context with a specific country, city, or year range (e.g., "in the UK between 2015 and 2025").
- Generate between 3 and 5 data series (lines) over 5 to 8 time points.
- Data MUST be realistic and tell a story: some lines increase, some decrease, some fluctuate, and they intersect at least once. Avoid flat lines.
"""
	+ _RESPONSE_RULES
	+ """
**Example 'chartData':**
{"type": "line", "data": [{"Year": "2010", "Beef": 120, "Chicken": 80, "Lamb": 60}, {"Year": "2014", "Beef": 130, "Chicken": 95, "Lamb": 60}, {"Year": "2018", "Beef": 125, "Chicken": 120, "Lamb": 75}], "config": {"categoryKey": "Year", "series": ["Beef", "Chicken", "Lamb"], "xAxisLabel": "Year", "yAxisLabel": "Consumption (in thousands of tonnes)"}}

Your entire response must be a single JSON object that strictly follows the output schema.
"""
)

STACKED_BAR_CHART_TEMPLATE = (
	"""You are an expert IELTS exam creator. Your task is to generate a complete writing prompt for IELTS Writing Task 1 (Academic) that involves a STACKED bar chart comparing the composition of several categories. The data can be in absolute numbers or percentages.

"""
	+ _TOPIC_CHOICE
	+ """
**CRITICAL REQUIREMENTS:**
- 'chartData.type' MUST be "bar" and 'taskType' MUST be exactly "bar".
- Be creative and avoid topics about energy consumption, production or sources. Consider demographics (population by age group in different cities), economics (company revenue by product line) or social habits (time spent on work, leisure, sleep).
- Invent a realistic context with a specific country, city, or year.
- Generate between 4 and 6 primary categories (bars) and between 3 and 5 data series (segments within each bar).
- If the data represents percentages, the segments MUST sum to exactly 100 for each bar.
"""
	+ _RESPONSE_RULES
	+ """
**Example 'chartData':**
{"type": "bar", "data": [{"City": "New York", "Paper": 120, "Glass": 80, "Plastics": 90}, {"City": "Chicago", "Paper": 90, "Glass": 70, "Plastics": 80}], "config": {"categoryKey": "City", "series": ["Paper", "Glass", "Plastics"], "xAxisLabel": "City", "yAxisLabel": "Waste Recycled (in thousands of tonnes)"}}

Your entire response must be a single JSON object that strictly follows the output schema.
"""
)

ACADEMIC_TASK1_TEMPLATE = (
	"""You are an expert IELTS exam creator. Your task is to generate a writing prompt for IELTS Writing Task 1 (Academic) built around a {{ chartType }} chart.

"""
	+ _TOPIC_CHOICE
	+ """
Instructions:
- Describe the data shown in the chart. The topic should be suitable for data visualization (e.g., population trends, economic data). The entire topic description must be bold (using <strong> tags).
- 'chartData.type' and 'taskType' MUST both be exactly "{{ chartType }}".
- For a bar or line chart, 'config' must have 'categoryKey' and 'series'. For a pie chart, 'config' must have 'categoryKey' and 'dataKey'.
- The data must be meaningful and realistic.
"""
	+ _RESPONSE_RULES
	+ """
Your entire response must be a single JSON object that strictly follows the output schema. Format the 'topic' and 'instructions' fields as clean HTML.
"""
)


def register(registry: SchemaRegistry) -> None:
	registry.register(
		"generateBarChartTopicFlow",
		TopicRequest,
		BarChartTopic,
		BAR_CHART_TEMPLATE,
		legacy=(RAW_DATA_STRING, SINGLE_DATA_KEY),
		post_validate=_chart_checks(),
		description="IELTS Writing Task 1 topic with a bar chart.",
	)
	registry.register(
		"generateLineChartTopicFlow",
		TopicRequest,
		LineChartTopic,
		LINE_CHART_TEMPLATE,
		legacy=(RAW_DATA_STRING, SINGLE_DATA_KEY),
		post_validate=_chart_checks(min_series=2),
		description="IELTS Writing Task 1 topic with a multi-line chart.",
	)
	registry.register(
		"generateStackedBarChartTopicFlow",
		TopicRequest,
		BarChartTopic,
		STACKED_BAR_CHART_TEMPLATE,
		legacy=(RAW_DATA_STRING,),
		post_validate=_chart_checks(min_series=2),
		description="IELTS Writing Task 1 topic with a stacked bar chart.",
	)
	registry.register(
		"generateWritingTask1AcademicFlow",
		AcademicTask1Request,
		AcademicTask1Topic,
		ACADEMIC_TASK1_TEMPLATE,
		legacy=(RAW_DATA_STRING, TASK_TYPE_FROM_CHART, SINGLE_DATA_KEY),
		post_validate=_academic_checks,
		random_fields=("chartType",),
		description="IELTS Writing Task 1 (Academic) topic with a bar, line or pie chart.",
	)
