from typing import Optional

from pydantic import Field

from ..registry import FollowUp, SchemaRegistry
from ..shapes import FlowModel, Markup, choice
from .charts import TASK1_INSTRUCTIONS, TopicRequest


class MapTopic(FlowModel):
	topic: Markup
	instructions: Markup
	task_type: choice("map")
	description: Optional[str] = Field(
		default=None,
		description="Plain-text description of the two maps, detailed enough for an illustrator to draw them.",
	)
	image_data_uri: Optional[str] = Field(default=None, description="Rendered maps as a data URI.")


MAP_TOPIC_TEMPLATE = f"""You are an expert IELTS exam creator. Your task is to generate a complete writing prompt for IELTS Writing Task 1 (Academic) that shows how a place has changed, using two maps (before and after).

{{% if topic %}}
User-provided Topic: {{{{ topic }}}}
Please create a prompt related to this topic.
{{% else %}}
Please generate a random, high-quality topic, for example a town centre, a university campus, a coastal village or an industrial site, with a specific place name and two years.
{{% endif %}}

**Response Instructions:**
- The 'topic' field MUST be a bold HTML string (wrapped in <strong> tags) naming the place and the two years.
- The 'instructions' field should always be exactly "{TASK1_INSTRUCTIONS}"
- Set 'taskType' to exactly "map".
- The 'description' field MUST describe both maps in plain text: the layout, the main buildings, roads and green areas, and what changed between the two years. Use concrete positions (north, south-east, next to the river).

Your entire response must be a single JSON object that strictly follows the output schema.
"""

MAP_IMAGE_TEMPLATE = """Draw two simple, clearly labelled maps side by side in the style of an IELTS Writing Task 1 exam paper: flat colours, a compass rose, a title above each map and a legend.

{{ description }}
"""


def register(registry: SchemaRegistry) -> None:
	registry.register(
		"generateMapTopicFlow",
		TopicRequest,
		MapTopic,
		MAP_TOPIC_TEMPLATE,
		follow_up=FollowUp(trigger_field="description", target_field="imageDataUri", template=MAP_IMAGE_TEMPLATE),
		description="IELTS Writing Task 1 map comparison, with the maps drawn when a description comes back.",
	)
