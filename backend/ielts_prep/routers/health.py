from fastapi import APIRouter

from ..flows import get_registry

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
	registry = get_registry()
	return {"status": "ok", "flows": len(registry), "frozen": registry.frozen}
