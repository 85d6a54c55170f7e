from fastapi import APIRouter

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok", "service": "jobsync"}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}
