from __future__ import annotations
import json
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from .flows.backend import GenerationError, GenerationMalformed, GenerationUnavailable, RateLimited
from .settings import settings

_TRANSIENT_STATUS = {408, 500, 502, 503, 504}


def extract_json_value(text: str) -> Any:
	# Raw JSON first, then a fenced ```json block, then the outermost braces
	try:
		return json.loads(text)
	except (ValueError, RecursionError):
		pass
	code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
	if code_block:
		try:
			return json.loads(code_block.group(1))
		except (ValueError, RecursionError):
			pass
	first = text.find("{")
	last = text.rfind("}")
	if first != -1 and last != -1 and last > first:
		try:
			return json.loads(text[first : last + 1])
		except (ValueError, RecursionError):
			pass
	raise GenerationMalformed(f"Gemini did not return valid JSON: {text[:200]}")


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
	header = response.headers.get("retry-after")
	if header:
		try:
			return max(0.0, float(header))
		except ValueError:
			pass
	# google.rpc.RetryInfo in the error details, e.g. {"retryDelay": "17s"}
	try:
		body = response.json()
	except (ValueError, RecursionError):
		return None
	error = body.get("error") if isinstance(body, dict) else None
	details = error.get("details") if isinstance(error, dict) else None
	for detail in details or []:
		if isinstance(detail, dict) and str(detail.get("@type", "")).endswith("RetryInfo"):
			match = re.fullmatch(r"(\d+(?:\.\d+)?)s", str(detail.get("retryDelay", "")))
			if match:
				return float(match.group(1))
	return None


def _status_error(err: httpx.HTTPStatusError) -> GenerationError:
	response = err.response
	status = response.status_code
	message = f"Gemini returned HTTP {status}: {response.text[:300]}"
	retry_after = _retry_after_seconds(response)
	if status == 429:
		return RateLimited(message, status_code=status, retry_after=retry_after)
	if status in _TRANSIENT_STATUS:
		return GenerationUnavailable(message, status_code=status, retry_after=retry_after)
	return GenerationError(message, status_code=status)


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		image_model: Optional[str] = None,
		timeout: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.image_model = image_model or settings.gemini_image_model
		self.thinking_budget = settings.gemini_thinking_budget
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or "https://generativelanguage.googleapis.com/v1beta/models"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=timeout or settings.gemini_timeout_seconds, transport=transport)

	async def generate_structured(
		self,
		prompt: str,
		response_schema: Dict[str, Any],
		*,
		safety_settings: Sequence[Tuple[str, str]] = (),
	) -> Any:
		payload: Dict[str, Any] = {
			"contents": [{"role": "user", "parts": [{"text": prompt}]}],
			"generationConfig": {
				"responseMimeType": "application/json",
				"responseJsonSchema": response_schema,
			},
		}
		if safety_settings:
			payload["safetySettings"] = [{"category": c, "threshold": t} for c, t in safety_settings]
		data = await self._post_payload(self.model, payload, thinking_budget=self.thinking_budget)
		return extract_json_value(self._text_of(data))

	async def generate_image(self, prompt: str) -> str:
		payload: Dict[str, Any] = {
			"contents": [{"role": "user", "parts": [{"text": prompt}]}],
			"generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
		}
		data = await self._post_payload(self.image_model, payload)
		for part in self._parts_of(data):
			inline = part.get("inlineData") or part.get("inline_data")
			if isinstance(inline, dict) and inline.get("data"):
				mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
				return f"data:{mime};base64,{inline['data']}"
		raise GenerationMalformed("Gemini returned no image data")

	async def _post_payload(
		self,
		model: str,
		payload: Dict[str, Any],
		*,
		thinking_budget: Optional[int] = None,
	) -> Dict[str, Any]:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		if thinking_budget is not None:
			config = dict(payload.get("generationConfig") or {})
			config["thinkingConfig"] = {"thinkingBudget": int(thinking_budget)}
			payload = {**payload, "generationConfig": config}
		url = f"{self.base_url}/{model}:generateContent"
		try:
			r = await self._client.post(url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			raise _status_error(http_err) from http_err
		except httpx.TimeoutException as timeout_err:
			raise GenerationUnavailable(f"Gemini request timed out: {timeout_err!r}") from timeout_err
		except httpx.RequestError as net_err:
			raise GenerationUnavailable(f"Gemini request failed: {net_err!r}") from net_err
		try:
			data = r.json()
		except (ValueError, RecursionError) as err:
			raise GenerationMalformed(f"Unexpected Gemini response: {r.text[:300]}") from err
		if not isinstance(data, dict):
			raise GenerationMalformed(f"Unexpected Gemini response: {r.text[:300]}")
		return data

	def _parts_of(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
		candidates = data.get("candidates")
		if not candidates:
			feedback = data.get("promptFeedback")
			block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
			if block_reason:
				raise GenerationMalformed(f"Gemini blocked the prompt: {block_reason}")
			raise GenerationMalformed("Gemini returned no candidates")
		if not isinstance(candidates, list) or not isinstance(candidates[0], dict):
			raise GenerationMalformed(f"Unexpected Gemini candidates: {str(candidates)[:300]}")
		content = candidates[0].get("content")
		if not isinstance(content, dict):
			raise GenerationMalformed(f"Unexpected Gemini content: {str(content)[:300]}")
		parts = content.get("parts") or []
		if not isinstance(parts, list):
			raise GenerationMalformed(f"Unexpected Gemini parts: {str(parts)[:300]}")
		return [p for p in parts if isinstance(p, dict)]

	def _text_of(self, data: Dict[str, Any]) -> str:
		# thought summaries are flagged with "thought": true and are not part of the answer
		texts = [p["text"] for p in self._parts_of(data) if isinstance(p.get("text"), str) and not p.get("thought")]
		if not texts:
			raise GenerationMalformed("Gemini returned no text")
		return "".join(texts)

	async def aclose(self) -> None:
		await self._client.aclose()
