from fastapi import APIRouter
from backend.domain import (
    auth,
    admin,
    ai,
    respostas,
    status,
    metricas
)

router = APIRouter()

# Rotas centralizadas com prefixos padronizados
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
router.include_router(ai.router, prefix="/ai", tags=["ia"])
router.include_router(respostas.router, prefix="/respostas", tags=["respostas"])
router.include_router(status.router, prefix="/status", tags=["status"])
router.include_router(metricas.router, prefix="/metricas", tags=["metricas"])
