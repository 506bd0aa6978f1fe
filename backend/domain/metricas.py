import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List
from fastapi import APIRouter, Depends, Query
from backend.clients import get_user_client
from backend.domain.auth import UsuarioAtual, usuario_atual, exigir_admin
from backend.domain.erros import ErroApi, mensagem_erro

router = APIRouter()
logger = logging.getLogger(__name__)


def ranking_por_usuario(linhas: List[dict]) -> List[Dict]:
    """Soma os eventos de cada usuário para um ranking simples."""
    por_usuario: Dict[str, Dict] = {}
    for m in linhas:
        chave = str(m.get("user_id") or "")
        atual = por_usuario.setdefault(chave, {"user_id": chave, "email": m.get("email") or "", "total": 0})
        atual["total"] += int(m.get("total") or 0)
    return sorted(por_usuario.values(), key=lambda u: u["total"], reverse=True)


@router.get("")
def obter_metricas(
    dias: int = Query(default=7, ge=1, le=365),
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    """
    Retorna o uso da biblioteca por usuário no período (somente admin).
    """
    exigir_admin(supabase, usuario.id)

    ate = datetime.now(timezone.utc)
    de = ate - timedelta(days=dias)

    try:
        linhas = supabase.rpc("metrics_usage_by_user", {
            "p_from": de.isoformat(),
            "p_to": ate.isoformat(),
        }).execute().data or []
    except Exception as e:
        logger.error(f"❌ Erro ao carregar métricas: {mensagem_erro(e)}")
        raise ErroApi(500, "metrics_failed", mensagem_erro(e))

    return {
        "ok": True,
        "de": de.isoformat(),
        "ate": ate.isoformat(),
        "linhas": linhas,
        "ranking": ranking_por_usuario(linhas),
    }
