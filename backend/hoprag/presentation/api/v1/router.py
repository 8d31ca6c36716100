"""V1 API router — aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from hoprag.presentation.api.v1.endpoints.health import router as health_router
from hoprag.presentation.api.v1.schema_controller import router as schema_router
from hoprag.presentation.api.v1.retrieval_controller import router as retrieval_router
from hoprag.presentation.api.v1.documents_controller import router as documents_router

router = APIRouter(prefix="/v1")
router.include_router(health_router)
router.include_router(schema_router)
router.include_router(retrieval_router)
router.include_router(documents_router)
