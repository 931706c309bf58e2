from fastapi import APIRouter
from toolgate.api.tools import router as tools_router

router = APIRouter()
router.include_router(tools_router)
