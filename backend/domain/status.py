import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set
from dateutil.parser import isoparse
from fastapi import APIRouter, Depends, Query
from backend.clients import get_user_client
from backend.domain.auth import (
    UsuarioAtual,
    usuario_atual,
    resolver_papel,
    papel_no_status,
    exigir_permissao,
    pode_revisar,
    pode_excluir,
)
from backend.domain.erros import ErroApi, mensagem_erro
from backend.domain.models import (
    StatusEntrada,
    SituacaoRequest,
    ComentarioRequest,
    NotificacaoOperadorRequest,
    AcaoOperadorRequest,
)
from backend.domain.status_regras import (
    PRIORIDADES,
    PREFIXO_ATUALIZACAO,
    PREFIXO_CIENTE,
    PREFIXO_ENVIADA,
    PREFIXOS_CONFIRMACAO,
    so_digitos,
    formatar_cpf,
    esta_concluido,
    situacao_finaliza,
)

router = APIRouter()
logger = logging.getLogger(__name__)

ACOES_OPERADOR = {
    "ciente": f"{PREFIXO_CIENTE} Operador ciente da atualização.",
    "resposta_enviada": f"{PREFIXO_ENVIADA} Resposta enviada ao usuário.",
}

CAMPOS_RESUMO = ("total", "abertas", "concluidas", "alta", "media", "baixa", "em_analise", "resolvido")
COLUNAS_SITUACAO = "id,nome,slug,cor,ordem,ativa,finaliza,exige_responsavel"
COLUNAS_COMENTARIO_OPERADOR = "status_id,comentario,created_by,created_at"


# === Notificações pendentes ===

def _em_utc(quando) -> datetime:
    ts = isoparse(quando) if isinstance(quando, str) else quando
    # Registros sem fuso vêm do banco em UTC
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _mais_recentes(comentarios: Iterable[dict]) -> Dict[str, datetime]:
    ultimos: Dict[str, datetime] = {}
    for c in comentarios:
        quando = c.get("created_at")
        if not quando:
            continue
        ts = _em_utc(quando)
        status_id = str(c.get("status_id"))
        if status_id not in ultimos or ts > ultimos[status_id]:
            ultimos[status_id] = ts
    return ultimos


def calcular_pendencias(
    atualizacoes: List[dict],
    confirmacoes: List[dict],
    ids_ativos: Set[str],
    revisor: bool = False,
) -> List[str]:
    """
    Status ativos com notificação pendente.

    Operador: a última atualização ao operador é mais nova que a última confirmação.
    Revisor: a última confirmação do operador é mais nova que a última atualização enviada.
    """
    ultima_atualizacao = _mais_recentes(atualizacoes)
    ultima_confirmacao = _mais_recentes(confirmacoes)

    pendentes = []
    for status_id, ts_atualizacao in ultima_atualizacao.items():
        if status_id not in ids_ativos:
            continue
        ts_confirmacao = ultima_confirmacao.get(status_id)
        if revisor:
            if ts_confirmacao is not None and ts_confirmacao > ts_atualizacao:
                pendentes.append(status_id)
        elif ts_confirmacao is None or ts_confirmacao < ts_atualizacao:
            pendentes.append(status_id)
    return pendentes


# === Acesso ao banco ===

def _rpc(supabase, funcao: str, params: dict, erro: str):
    try:
        return supabase.rpc(funcao, params).execute().data
    except Exception as e:
        logger.error(f"❌ Erro em {funcao}: {mensagem_erro(e)}")
        raise ErroApi(500, erro, mensagem_erro(e))


def _primeiro(dados):
    if isinstance(dados, list):
        return dados[0] if dados else None
    return dados or None


def _papel(supabase, usuario: UsuarioAtual) -> str:
    return papel_no_status(resolver_papel(supabase, usuario.id))


def _listar_do_mes(supabase, ano: int, mes: int) -> List[dict]:
    return _rpc(supabase, "status_list_latest_by_cpf", {"p_ano": ano, "p_mes": mes}, "load_failed") or []


def _buscar_situacao(supabase, situacao_id: str) -> Optional[dict]:
    try:
        dados = (
            supabase.table("status_situacoes")
            .select(COLUNAS_SITUACAO)
            .eq("id", situacao_id)
            .limit(1)
            .execute()
            .data
        )
    except Exception as e:
        raise ErroApi(500, "load_failed", mensagem_erro(e))
    return _primeiro(dados)


def _comentar(supabase, status_id: str, comentario: str):
    _rpc(supabase, "status_add_comment", {"p_status_id": status_id, "p_comentario": comentario}, "comment_failed")


def _comentarios_com_prefixo(supabase, prefixo: str, autor: Optional[str] = None) -> List[dict]:
    query = supabase.table("status_comments").select(COLUNAS_COMENTARIO_OPERADOR)
    if autor:
        query = query.eq("created_by", autor)
    return query.ilike("comentario", f"{prefixo}%").execute().data or []


def _ano_mes_padrao(ano: Optional[int], mes: Optional[int]):
    hoje = datetime.now()
    return ano or hoje.year, mes or hoje.month


# === Rotas ===

@router.get("/situacoes")
def listar_situacoes(usuario: UsuarioAtual = Depends(usuario_atual), supabase=Depends(get_user_client)):
    try:
        dados = (
            supabase.table("status_situacoes")
            .select(COLUNAS_SITUACAO)
            .eq("ativa", True)
            .order("ordem")
            .execute()
            .data
            or []
        )
    except Exception as e:
        raise ErroApi(500, "load_failed", mensagem_erro(e))
    return {"ok": True, "situacoes": dados}


@router.get("")
def listar_status(
    ano: Optional[int] = None,
    mes: Optional[int] = Query(default=None, ge=1, le=12),
    aba: str = "ativos",
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    """Último status de cada CPF no mês, separado em ativos e concluídos."""
    ano, mes = _ano_mes_padrao(ano, mes)
    linhas = _listar_do_mes(supabase, ano, mes)

    ativos = [l for l in linhas if not esta_concluido(l)]
    concluidos = [l for l in linhas if esta_concluido(l)]

    return {
        "ok": True,
        "ano": ano,
        "mes": mes,
        "itens": concluidos if aba == "concluidos" else ativos,
        "total_ativos": len(ativos),
        "total_concluidos": len(concluidos),
    }


@router.get("/resumo")
def resumo_status(
    ano: Optional[int] = None,
    mes: Optional[int] = Query(default=None, ge=1, le=12),
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    ano, mes = _ano_mes_padrao(ano, mes)
    papel = _papel(supabase, usuario)
    funcao = "status_dashboard_summary" if papel == "admin" else "status_dashboard_summary_my"

    linha = _primeiro(_rpc(supabase, funcao, {"p_ano": ano, "p_mes": mes}, "summary_failed")) or {}

    resumo = {campo: linha.get(campo) or 0 for campo in CAMPOS_RESUMO}
    # As funções do banco devolvem "aguardando"
    resumo["aguardando_informacoes"] = linha.get("aguardando") or 0
    return {"ok": True, "resumo": resumo}


@router.get("/pendencias")
def pendencias_status(
    ano: Optional[int] = None,
    mes: Optional[int] = Query(default=None, ge=1, le=12),
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    """Notificações pendentes do usuário: operador ou revisor (admin/supervisor)."""
    ano, mes = _ano_mes_padrao(ano, mes)
    papel = _papel(supabase, usuario)
    revisor = pode_revisar(papel)

    if papel != "operador" and not revisor:
        return {"ok": True, "papel": papel, "total": 0, "status_ids": []}

    try:
        ids_ativos = {str(l.get("id")) for l in _listar_do_mes(supabase, ano, mes) if not esta_concluido(l)}
        if revisor:
            atualizacoes = _comentarios_com_prefixo(supabase, PREFIXO_ATUALIZACAO, usuario.id)
            confirmacoes = [c for p in PREFIXOS_CONFIRMACAO for c in _comentarios_com_prefixo(supabase, p)]
        else:
            atualizacoes = _comentarios_com_prefixo(supabase, PREFIXO_ATUALIZACAO)
            confirmacoes = [c for p in PREFIXOS_CONFIRMACAO for c in _comentarios_com_prefixo(supabase, p, usuario.id)]
        pendentes = calcular_pendencias(atualizacoes, confirmacoes, ids_ativos, revisor=revisor)
    except Exception as e:
        logger.warning(f"⚠️ Não foi possível calcular notificações pendentes: {mensagem_erro(e)}")
        pendentes = []

    return {"ok": True, "papel": papel, "total": len(pendentes), "status_ids": pendentes}


@router.get("/historico/{cpf}")
def historico_cpf(cpf: str, usuario: UsuarioAtual = Depends(usuario_atual), supabase=Depends(get_user_client)):
    dados = _rpc(supabase, "status_history_by_cpf", {"p_cpf": so_digitos(cpf)}, "load_failed") or []
    return {"ok": True, "historico": dados}


@router.post("")
def salvar_status(
    entrada: StatusEntrada,
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    """Cria um status novo ou edita um existente (edição só para admin/supervisor)."""
    cpf = so_digitos(entrada.cpf)
    if len(cpf) != 11:
        raise ErroApi(400, "invalid_cpf", "CPF deve conter 11 dígitos.")
    nome_usuario = entrada.nome_usuario.strip()
    if not nome_usuario:
        raise ErroApi(400, "missing_nome_usuario", "Informe o nome do usuário.")
    problematica = entrada.problematica.strip()
    if not problematica:
        raise ErroApi(400, "missing_problematica", "Selecione a problemática.")
    if entrada.prioridade not in PRIORIDADES:
        raise ErroApi(400, "invalid_prioridade")
    if not 1 <= entrada.mes <= 12:
        raise ErroApi(400, "invalid_mes")

    if entrada.id:
        papel = _papel(supabase, usuario)
        exigir_permissao(pode_revisar(papel), "Apenas Administrador e Supervisor podem editar.")

    dados = _rpc(supabase, "status_upsert", {
        "p_id": entrada.id or None,
        "p_cpf": cpf,
        "p_nome_usuario": nome_usuario,
        "p_problematica": problematica,
        "p_problematica_outro": (entrada.problematica_outro or "") if problematica == "Outro" else "",
        "p_prioridade": entrada.prioridade,
        "p_ano": entrada.ano,
        "p_mes": entrada.mes,
    }, "save_failed")

    novo_id = _primeiro(dados)
    logger.info(f"📝 Status salvo para CPF {formatar_cpf(cpf)}")
    return {"ok": True, "id": str(novo_id) if novo_id is not None else entrada.id}


@router.get("/{status_id}/edicao")
def dados_edicao(status_id: str, usuario: UsuarioAtual = Depends(usuario_atual), supabase=Depends(get_user_client)):
    linha = _primeiro(_rpc(supabase, "status_get_edit_payload", {"p_status_id": status_id}, "load_failed"))
    if not linha:
        raise ErroApi(404, "not_found", "Registro não encontrado ou sem permissão.")
    return {"ok": True, "status": linha}


@router.post("/{status_id}/situacao")
def alterar_situacao(
    status_id: str,
    payload: SituacaoRequest,
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    """Altera a situação; revisores notificam o operador, exceto em situações finais."""
    situacao = _buscar_situacao(supabase, payload.situacao_id)
    if not situacao:
        raise ErroApi(400, "invalid_situacao")

    papel = _papel(supabase, usuario)
    notificacao = (payload.notificacao or "").strip()
    notificar = pode_revisar(papel) and not situacao_finaliza(situacao)
    if notificar and not notificacao:
        raise ErroApi(400, "missing_notification",
                      "Selecione uma opção de notificação ao Operador antes de atualizar a situação.")

    _rpc(supabase, "status_set_situacao", {"p_status_id": status_id, "p_situacao_id": payload.situacao_id},
         "set_situacao_failed")

    if notificar:
        _comentar(supabase, status_id, f"{PREFIXO_ATUALIZACAO} {notificacao}")

    return {"ok": True, "finaliza": situacao_finaliza(situacao)}


@router.post("/{status_id}/reabrir")
def reabrir_status(status_id: str, usuario: UsuarioAtual = Depends(usuario_atual), supabase=Depends(get_user_client)):
    papel = _papel(supabase, usuario)
    exigir_permissao(pode_revisar(papel), "Apenas Administrador e Supervisor podem reabrir.")
    _rpc(supabase, "status_reopen", {"p_status_id": status_id}, "reopen_failed")
    return {"ok": True}


@router.delete("/{status_id}")
def excluir_status(status_id: str, usuario: UsuarioAtual = Depends(usuario_atual), supabase=Depends(get_user_client)):
    papel = _papel(supabase, usuario)
    exigir_permissao(pode_excluir(papel), "Apenas Administrador pode excluir.")
    _rpc(supabase, "status_delete", {"p_status_id": status_id}, "delete_failed")
    logger.info(f"🗑️ Status excluído: {status_id}")
    return {"ok": True}


@router.get("/{status_id}/comentarios")
def listar_comentarios(status_id: str, usuario: UsuarioAtual = Depends(usuario_atual), supabase=Depends(get_user_client)):
    try:
        dados = (
            supabase.table("status_comments")
            .select("id,comentario,created_by,created_at")
            .eq("status_id", status_id)
            .order("created_at", desc=True)
            .execute()
            .data
            or []
        )
    except Exception as e:
        raise ErroApi(500, "load_failed", mensagem_erro(e))
    return {"ok": True, "comentarios": dados}


@router.post("/{status_id}/comentarios")
def adicionar_comentario(
    status_id: str,
    payload: ComentarioRequest,
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    texto = payload.comentario.strip()
    if not texto:
        raise ErroApi(400, "empty_comment")
    _comentar(supabase, status_id, texto)
    return {"ok": True}


@router.get("/{status_id}/timeline")
def linha_do_tempo(status_id: str, usuario: UsuarioAtual = Depends(usuario_atual), supabase=Depends(get_user_client)):
    dados = _rpc(supabase, "status_timeline", {"p_status_id": status_id}, "load_failed") or []
    return {"ok": True, "timeline": dados}


@router.post("/{status_id}/notificar-operador")
def notificar_operador(
    status_id: str,
    payload: NotificacaoOperadorRequest,
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    papel = _papel(supabase, usuario)
    exigir_permissao(pode_revisar(papel), "Apenas Administrador e Supervisor podem notificar o operador.")
    texto = payload.texto.strip()
    if not texto:
        raise ErroApi(400, "empty_comment")
    _comentar(supabase, status_id, f"{PREFIXO_ATUALIZACAO} {texto}")
    return {"ok": True}


@router.post("/{status_id}/acao-operador")
def acao_operador(
    status_id: str,
    payload: AcaoOperadorRequest,
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    comentario = ACOES_OPERADOR.get(payload.acao)
    if not comentario:
        raise ErroApi(400, "invalid_action")
    _comentar(supabase, status_id, comentario)
    return {"ok": True}
