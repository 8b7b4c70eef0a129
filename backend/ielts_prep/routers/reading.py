from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_executor
from ..flows import FlowExecutor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reading", tags=["reading"])


class PassageAnswers(BaseModel):
	passage: str
	questionsAndAnswers: List[Dict[str, Any]]


class BatchFeedbackRequest(BaseModel):
	passages: List[PassageAnswers] = Field(min_length=1)


@router.post("/feedback")
async def reading_feedback(req: BatchFeedbackRequest, executor: FlowExecutor = Depends(get_executor)) -> Dict[str, Any]:
	# One flow call per passage, run together; results keep the passage order
	results = await asyncio.gather(
		*(executor.execute("readingFeedbackFlow", p.model_dump()) for p in req.passages),
		return_exceptions=True,
	)
	for index, result in enumerate(results):
		if isinstance(result, BaseException):
			logger.warning("Reading feedback failed for passage %d: %s", index + 1, result)
			raise result
	return {
		"feedback": [item for result in results for item in result["feedback"]],
		"passages": list(results),
	}
