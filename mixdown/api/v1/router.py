from fastapi import APIRouter
from mixdown.api.v1 import mixes

router = APIRouter()
router.include_router(mixes.router, prefix="/mixes", tags=["mixes"])
