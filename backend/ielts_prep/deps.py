from fastapi import HTTPException

from .flows import FlowExecutor, get_registry
from .gemini_client import GeminiClient


async def get_executor():
	try:
		client = GeminiClient()
	except ValueError as e:
		raise HTTPException(status_code=503, detail=str(e))
	try:
		yield FlowExecutor(get_registry(), client)
	finally:
		await client.aclose()
