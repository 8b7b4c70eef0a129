import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from .flows import BackendRejected, BackendUnavailable, FlowError, InvalidInput, MalformedOutput, UnknownOperation, get_registry
from .settings import settings
from .routers import health
from .routers import flows
from .routers import reading

logging.basicConfig(
	level=settings.log_level.upper(),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
	UnknownOperation: 404,
	InvalidInput: 422,
	BackendUnavailable: 503,
	MalformedOutput: 502,
	BackendRejected: 502,
}

app = FastAPI(title="IELTS Prep Flows API")
app.include_router(health.router)
app.include_router(flows.router)
app.include_router(reading.router)


@app.exception_handler(FlowError)
async def flow_error_handler(request: Request, exc: FlowError):
	status = next((code for kind, code in _STATUS_BY_ERROR.items() if isinstance(exc, kind)), 500)
	headers = {}
	if isinstance(exc, BackendUnavailable) and exc.retry_after is not None:
		headers["Retry-After"] = str(int(round(exc.retry_after)))
	if status >= 500:
		logger.warning("%s on %s: %s", exc.kind, request.url.path, exc)
	return JSONResponse(status_code=status, content=exc.to_dict(), headers=headers)


@app.get("/", include_in_schema=False)
async def redirect_root_to_docs():
	return RedirectResponse(url="/docs")


@app.get("/info")
def root():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"provider": settings.gemini_provider,
		"model": settings.gemini_model,
	}


@app.on_event("startup")
async def startup_event():
	# Registration problems are developer mistakes; fail startup rather than the first request
	registry = get_registry()
	logger.info("Registered %d flows: %s", len(registry), ", ".join(registry.names()))
