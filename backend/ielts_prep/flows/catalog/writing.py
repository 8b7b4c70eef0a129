from typing import Optional

from pydantic import Field

from ..registry import SchemaRegistry
from ..shapes import FlowModel, Markup


class WritingTopicRequest(FlowModel):
	topic: Optional[str] = Field(default=None, description="An optional user-provided topic or keywords.")


class WritingTopic(FlowModel):
	topic: Markup = Field(description="The generated prompt, formatted in HTML with the entire prompt bold.")
	instructions: Markup = Field(description="Specific instructions for the task, formatted in HTML.")


class EssayFeedbackRequest(FlowModel):
	topic: str = Field(description="The task prompt the essay answers.")
	essay: str = Field(min_length=50, description="The candidate's essay.")


class EssayFeedback(FlowModel):
	overall_feedback: Markup
	grammar: Markup
	vocabulary: Markup
	coherence: Markup
	argumentation: Markup


_TOPIC_CHOICE = """{% if topic %}
User-provided Topic: {{ topic }}
Create a prompt related to this topic.
{% else %}
Generate a random, high-quality topic appropriate for an IELTS exam.
{% endif %}
"""

TASK1_GENERAL_TEMPLATE = (
	"""You are an expert IELTS exam creator. Your task is to generate a writing prompt for IELTS Writing Task 1 (General Training).

"""
	+ _TOPIC_CHOICE
	+ """
Instructions:
- Generate a situation for a letter. The topic should be a common, everyday scenario requiring a formal, semi-formal, or informal letter. The generated 'topic' text must be formatted as HTML with the entire scenario in bold (using <strong> tags).
- The instruction should be "Write at least 150 words. You do NOT need to write any addresses. Begin your letter as follows: Dear ...,"

Your entire response must be in a single JSON object that strictly follows the output schema. Format the 'topic' and 'instructions' fields as clean HTML.
"""
)

TASK2_TEMPLATE = (
	"""You are an expert IELTS exam creator. Your task is to generate a writing prompt for IELTS Writing Task 2.

"""
	+ _TOPIC_CHOICE
	+ """
Instructions:
- Generate an essay question that requires a discursive response. The topic should be of general interest and allow for discussion of different viewpoints.
- The instruction should be "Write at least 250 words. Give reasons for your answer and include any relevant examples from your own knowledge or experience."
- You must randomly pick one of the following essay types to generate the question:
  1. Opinion Essay (Agree/Disagree). Example: "Some people think that university education should be free for everyone. To what extent do you agree or disagree?"
  2. Discussion Essay (Discuss Both Views). Example: "Some people believe that technology has made our lives more complicated, while others think it has made life easier. Discuss both views and give your own opinion."
  3. Problem/Solution Essay. Example: "Many cities around the world are facing traffic congestion. What are the main problems, and what solutions can be suggested to deal with this issue?"
  4. Advantages/Disadvantages Essay. Example: "In recent years, more people are choosing to work from home. What are the advantages and disadvantages of this trend?"
  5. Double Question Essay. Example: "Nowadays, many people prefer to shop online rather than in physical stores. Why is this the case? Do you think this is a positive or negative development?"
- Format the output 'topic' as HTML. The introductory statement goes in a <p> tag with a <strong> tag inside it. The question itself goes in a separate <p> tag below it, also with a <strong> tag inside it.
- Example HTML format for the topic:
<p><strong>The increasing use of Artificial Intelligence (AI) in various aspects of our daily lives is a significant technological development.</strong></p><p><strong>What are the advantages and disadvantages of this trend?</strong></p>

Your entire response must be in a single JSON object that strictly follows the output schema. Format the 'topic' and 'instructions' fields as clean HTML.
"""
)

ESSAY_FEEDBACK_TEMPLATE = """You are an experienced IELTS writing examiner. Assess the candidate's essay against the IELTS band descriptors.

Task:
{{ topic }}

Essay:
---
{{ essay }}
---

Give feedback in five parts:
- 'overallFeedback': an estimated band score and a short summary of the main strengths and weaknesses.
- 'grammar': Grammatical Range and Accuracy. Quote mistakes and show the corrected form.
- 'vocabulary': Lexical Resource. Point out repetition, misused words and better alternatives.
- 'coherence': Coherence and Cohesion. Comment on paragraphing, linking devices and progression.
- 'argumentation': Task Response. Comment on how fully the essay answers the question and supports its position.

Every field must be clean HTML (use <p>, <ul>, <li> and <strong>).
Your entire response must be in a single JSON object that strictly follows the output schema.
"""


def register(registry: SchemaRegistry) -> None:
	registry.register(
		"generateWritingTask1GeneralFlow",
		WritingTopicRequest,
		WritingTopic,
		TASK1_GENERAL_TEMPLATE,
		description="IELTS Writing Task 1 (General Training) letter prompt.",
	)
	registry.register(
		"generateWritingTask2Flow",
		WritingTopicRequest,
		WritingTopic,
		TASK2_TEMPLATE,
		description="IELTS Writing Task 2 essay question.",
	)
	registry.register(
		"essayFeedbackFlow",
		EssayFeedbackRequest,
		EssayFeedback,
		ESSAY_FEEDBACK_TEMPLATE,
		description="Examiner-style feedback on a Task 1 or Task 2 essay.",
	)
