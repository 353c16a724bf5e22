from fastapi import APIRouter

from app.api.system import router as system_router

router = APIRouter()

router.include_router(system_router)


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Starlight signaling server"}
