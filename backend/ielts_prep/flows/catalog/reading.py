from typing import Any, Dict, List, Mapping, Optional

from pydantic import Field

from ..errors import Violation
from ..registry import LegacyShape, SchemaRegistry
from ..shapes import FlowModel, Markup, choice, unwrap_json

QUESTION_TYPES = (
	"multiple-choice",
	"true-false-not-given",
	"yes-no-not-given",
	"matching-headings",
	"matching-information",
	"matching-features",
	"matching-sentence-endings",
	"sentence-completion",
	"summary-completion",
	"note-completion",
	"table-completion",
	"flow-chart-completion",
	"diagram-completion",
	"short-answer",
)


class ReadingTestRequest(FlowModel):
	question_type: choice("reading-comprehension")
	training_type: choice("Academic", "General Training")
	difficulty: Optional[str] = Field(default=None, description="Difficulty of the question set (e.g. easy, medium, hard).")
	topic: Optional[str] = Field(default=None, description="Topic to generate the test about.")


class ReadingQuestion(FlowModel):
	question_number: int = Field(description="The number of the question in the sequence (1-40).")
	question_text: str
	question_type: choice(*QUESTION_TYPES)
	options: Optional[List[str]] = Field(default=None, description="Options for multiple-choice, matching, or completion questions.")
	answer: str


class QuestionGroup(FlowModel):
	instruction: Optional[Markup] = None
	questions: List[ReadingQuestion] = Field(min_length=1)


class Passage(FlowModel):
	passage_number: int
	passage_title: Optional[str] = None
	passage_text: str
	question_groups: List[QuestionGroup] = Field(min_length=1)


class ReadingTest(FlowModel):
	passages: List[Passage] = Field(min_length=1)


class QuestionAndAnswer(FlowModel):
	question_text: str
	user_answer: str
	correct_answer: str


class ReadingFeedbackRequest(FlowModel):
	passage: str
	questions_and_answers: List[QuestionAndAnswer] = Field(min_length=1)


class FeedbackItem(FlowModel):
	question_text: str
	user_answer: str
	correct_answer: str
	is_correct: bool
	explanation: str = Field(description="Why the correct answer is right, referencing the passage.")


class ReadingFeedback(FlowModel):
	feedback: List[FeedbackItem]


def _flat_questions(candidate: Dict[str, Any]) -> Optional[Dict[str, Any]]:
	# older tests listed questions straight on the passage
	passages = unwrap_json(candidate.get("passages"))
	if not isinstance(passages, list):
		return None
	changed = False
	reconciled = []
	for passage in passages:
		if isinstance(passage, dict) and "questionGroups" not in passage and isinstance(passage.get("questions"), list):
			questions = passage["questions"]
			passage = {k: v for k, v in passage.items() if k != "questions"}
			passage["questionGroups"] = [{"questions": questions}]
			changed = True
		reconciled.append(passage)
	if not changed:
		return None
	return {**candidate, "passages": reconciled}


FLAT_QUESTIONS = LegacyShape("questions without groups", _flat_questions)

PRACTICE_TEST_SAFETY = (
	("HARM_CATEGORY_HATE_SPEECH", "BLOCK_ONLY_HIGH"),
	("HARM_CATEGORY_DANGEROUS_CONTENT", "BLOCK_NONE"),
	("HARM_CATEGORY_HARASSMENT", "BLOCK_MEDIUM_AND_ABOVE"),
	("HARM_CATEGORY_SEXUALLY_EXPLICIT", "BLOCK_LOW_AND_ABOVE"),
)


def _unique_question_numbers(inputs: Mapping[str, Any], output: Mapping[str, Any]) -> List[Violation]:
	problems: List[Violation] = []
	seen: Dict[int, str] = {}
	for p, passage in enumerate(output.get("passages", [])):
		for g, group in enumerate(passage.get("questionGroups", [])):
			for q, question in enumerate(group.get("questions", [])):
				number = question.get("questionNumber")
				where = f"passages.{p}.questionGroups.{g}.questions.{q}"
				if number in seen:
					problems.append(
						Violation(
							("passages", p, "questionGroups", g, "questions", q, "questionNumber"),
							f"question {number} is already numbered at {seen[number]}",
						)
					)
				else:
					seen[number] = where
	return problems


def _feedback_per_question(inputs: Mapping[str, Any], output: Mapping[str, Any]) -> List[Violation]:
	asked = len(inputs.get("questionsAndAnswers") or [])
	given = len(output.get("feedback") or [])
	if asked != given:
		return [Violation(("feedback",), f"expected feedback for {asked} questions, got {given}")]
	return []


PRACTICE_TEST_TEMPLATE = """You are an expert IELTS exam creator. Your task is to generate a full IELTS Reading test.

The test must contain exactly 3 reading passages.
The total number of questions across all 3 passages must be exactly 40.
The difficulty should increase with each passage (Passage 1 should be the easiest, Passage 3 the hardest).

Based on the Training Type ({{ trainingType }}), the passages should be:
- Academic: Texts from academic journals, books, magazines, and newspapers. The tone should be formal and academic.
- General Training: Texts from advertisements, official documents, company handbooks, books, and newspapers. The context should be more related to everyday situations.

Each passage must have its questions organised into 'questionGroups'. Each group holds questions of a single type and an 'instruction' in HTML telling the candidate how to answer (e.g. "<p>Do the following statements agree with the information given in the passage? Write <strong>TRUE</strong>, <strong>FALSE</strong> or <strong>NOT GIVEN</strong>.</p>").
You must create a mix of question types from the following list:
- multiple-choice
- true-false-not-given
- yes-no-not-given
- matching-headings (provide a list of headings in 'options')
- matching-information
- matching-features
- matching-sentence-endings
- sentence-completion
- summary-completion
- note-completion
- table-completion
- flow-chart-completion
- diagram-completion
- short-answer

Ensure the question numbering is sequential from 1 to 40 across all three passages, with no number used twice.
Your entire response must be in a single JSON object that strictly follows the output schema.

Training Type: {{ trainingType }}
{% if topic %}
Topic: {{ topic }}
{% endif %}
{% if difficulty %}
Difficulty: {{ difficulty }}
{% endif %}
"""

READING_FEEDBACK_TEMPLATE = """You are an IELTS reading comprehension tutor. Your task is to provide feedback on a user's answers to a set of questions based on a reading passage.

For each question, you will be given the question text, the user's answer, and the correct answer. You must:
1.  Determine if the user's answer is correct.
2.  Provide a clear and concise explanation for the correct answer, quoting or referencing specific sentences or phrases from the passage to support your explanation.
3.  If the user's answer was incorrect, explain the mistake. If the user did not provide an answer, just explain the correct answer.

Return exactly one feedback entry per question, in the order given.

Reading Passage:
---
{{ passage }}
---

Here are the questions and answers:
{% for item in questionsAndAnswers %}
- Question: {{ item.questionText }}
- User's Answer: {{ item.userAnswer }}
- Correct Answer: {{ item.correctAnswer }}
---
{% endfor %}

Please provide your feedback in the specified JSON format.
"""


def register(registry: SchemaRegistry) -> None:
	registry.register(
		"generatePracticeQuestionFlow",
		ReadingTestRequest,
		ReadingTest,
		PRACTICE_TEST_TEMPLATE,
		legacy=(FLAT_QUESTIONS,),
		post_validate=_unique_question_numbers,
		safety_settings=PRACTICE_TEST_SAFETY,
		description="Full IELTS Reading test: three passages and forty questions.",
	)
	registry.register(
		"readingFeedbackFlow",
		ReadingFeedbackRequest,
		ReadingFeedback,
		READING_FEEDBACK_TEMPLATE,
		post_validate=_feedback_per_question,
		description="Explains a candidate's answers to the questions of one passage.",
	)
