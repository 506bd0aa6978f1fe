import io
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import pandas as pd
from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import Response
from backend.clients import get_user_client
from backend.domain.auth import (
    UsuarioAtual,
    usuario_atual,
    resolver_papel,
    exigir_admin,
    exigir_permissao,
    pode_escrever,
    pode_excluir,
    pode_favoritar,
)
from backend.domain.erros import ErroApi, mensagem_erro
from backend.domain.models import Resposta, RespostaEntrada, FavoritoRequest, EventoRequest

router = APIRouter()
logger = logging.getLogger(__name__)

TODOS = "Todos"
POR_PAGINA = 12
TAMANHO_LOTE_CSV = 300
LIMITE_AUDITORIA = 300

CAMPOS_FILTRO = ("tema", "subtema", "produto", "canal", "status")
CAMPOS_BUSCA = ("tema", "subtema", "assunto", "produto", "canal", "status", "resposta", "tags")
CAMPOS_IMPORTANTES = ("tema", "subtema", "assunto", "produto", "canal", "status", "tags", "resposta")
COLUNAS_CSV = ["id", "tema", "subtema", "assunto", "produto", "canal", "status", "tags", "resposta", "favorito", "updated_at"]
EVENTOS_UI = ("view", "copy", "prompt")

CHATGPT_URL = "https://chat.openai.com/"
GEMINI_URL = "https://gemini.google.com/app"


def agora_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# === Conversões ===

def parse_tags(valor) -> List[str]:
    if isinstance(valor, list):
        return [str(t).strip() for t in valor if str(t).strip()]
    return [t.strip() for t in str(valor or "").split("|") if t.strip()]


def tags_para_texto(tags) -> str:
    return " | ".join(parse_tags(tags))


def linha_para_resposta(linha: Dict[str, Any]) -> Resposta:
    return Resposta(
        id=str(linha.get("id")),
        tema=linha.get("tema") or "",
        subtema=linha.get("subtema") or "",
        assunto=linha.get("assunto") or "",
        produto=linha.get("produto") or "",
        canal=linha.get("canal") or "",
        status=linha.get("status") or "",
        tags=parse_tags(linha.get("tags")),
        resposta=linha.get("resposta") or "",
        favorito=bool(linha.get("favorito")),
        atualizado_em=linha.get("updated_at") or linha.get("atualizadoEm") or agora_iso(),
    )


def escapar_like(termo: str) -> str:
    """Escapa os curingas do LIKE para buscar o texto literal."""
    return re.sub(r"[%_]", lambda m: "\\" + m.group(0), termo)


# === Filtros, facetas e estatísticas ===

def filtrar_respostas(respostas: List[Resposta], busca: str) -> List[Resposta]:
    q = (busca or "").strip().lower()
    if not q:
        return respostas
    filtradas = []
    for r in respostas:
        texto = " ".join([r.tema, r.subtema, r.assunto, r.produto, r.canal, r.status, r.resposta, *r.tags]).lower()
        if q in texto:
            filtradas.append(r)
    return filtradas


def facetas(respostas: List[Resposta]) -> Dict[str, List[str]]:
    resultado = {}
    for campo in CAMPOS_FILTRO:
        valores = []
        for r in respostas:
            valor = getattr(r, campo)
            if valor and valor not in valores:
                valores.append(valor)
        resultado[campo] = [TODOS, *valores]
    return resultado


def estatisticas(respostas: List[Resposta]) -> Dict[str, int]:
    return {
        "total": len(respostas),
        "ativas": sum(1 for r in respostas if r.status == "Ativa"),
        "em_revisao": sum(1 for r in respostas if r.status == "Em revisão"),
        "arquivadas": sum(1 for r in respostas if r.status == "Arquivada"),
        "favoritas": sum(1 for r in respostas if r.favorito),
    }


def paginar(itens: list, pagina: int, por_pagina: int = POR_PAGINA):
    total_paginas = max(1, math.ceil(len(itens) / por_pagina))
    pagina = min(max(1, pagina), total_paginas)
    inicio = (pagina - 1) * por_pagina
    return itens[inicio:inicio + por_pagina], pagina, total_paginas


def montar_prompt_ia(r: Resposta) -> str:
    return f"""
Você é um atendente do Detran. Responda com clareza e objetividade, sem inventar informações.

Tema: {r.tema}
Subtema: {r.subtema}
Assunto: {r.assunto}
Produto: {r.produto}
Canal: {r.canal}
Status: {r.status}
Tags: {", ".join(r.tags)}

BASE OFICIAL:
{r.resposta}

Agora gere a resposta final ao usuário. Se faltar alguma informação para concluir, faça 1 pergunta objetiva.
""".strip()


def _normalizar_valor(campo: str, valor) -> str:
    if campo == "tags":
        return tags_para_texto(valor)
    return str(valor if valor is not None else "").strip()


def diff_importante(antigo: Optional[dict], novo: Optional[dict]) -> List[Dict[str, str]]:
    """Somente os campos relevantes que mudaram entre duas versões."""
    mudancas = []
    for campo in CAMPOS_IMPORTANTES:
        antes = _normalizar_valor(campo, (antigo or {}).get(campo))
        depois = _normalizar_valor(campo, (novo or {}).get(campo))
        if antes != depois:
            mudancas.append({"field": campo, "before": antes, "after": depois})
    return mudancas


def filtrar_auditoria(linhas: List[dict], busca: str) -> List[dict]:
    q = (busca or "").strip().lower()
    if not q:
        return linhas
    filtradas = []
    for a in linhas:
        ator = f"{a.get('changed_by') or ''} {a.get('changed_by_email') or ''}"
        antigo = " ".join(_normalizar_valor(c, (a.get("old_row") or {}).get(c)) for c in CAMPOS_IMPORTANTES) if a.get("old_row") else ""
        novo = " ".join(_normalizar_valor(c, (a.get("new_row") or {}).get(c)) for c in CAMPOS_IMPORTANTES) if a.get("new_row") else ""
        texto = f"{ator} {a.get('resposta_id') or ''} {a.get('action') or ''} {antigo} {novo}".lower()
        if q in texto:
            filtradas.append(a)
    return filtradas


# === CSV ===

def _coluna(linha: dict, nome: str, padrao: str = "") -> str:
    for chave in (nome, nome.capitalize()):
        valor = linha.get(chave)
        if valor is not None and str(valor) != "":
            return str(valor).strip()
    return padrao


def preparar_linhas_csv(texto: str) -> List[dict]:
    """Converte o CSV em payloads de upsert para a tabela respostas."""
    try:
        df = pd.read_csv(io.StringIO(texto), dtype=str, keep_default_na=False, skip_blank_lines=True)
    except pd.errors.EmptyDataError:
        raise ErroApi(400, "csv_empty", "CSV vazio.")
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise ErroApi(400, "csv_parse_error", f"Erro ao ler CSV. Verifique o cabeçalho/colunas. ({str(e)})")

    linhas = [l for l in df.to_dict(orient="records") if any(str(v).strip() for v in l.values())]
    if not linhas:
        raise ErroApi(400, "csv_empty", "CSV vazio.")

    atualizado = agora_iso()
    payloads = []
    for linha in linhas:
        payload = {
            "tema": _coluna(linha, "tema"),
            "subtema": _coluna(linha, "subtema"),
            "assunto": _coluna(linha, "assunto"),
            "produto": _coluna(linha, "produto"),
            "canal": _coluna(linha, "canal") or "Chat",
            "status": _coluna(linha, "status") or "Ativa",
            "tags": "|".join(parse_tags(_coluna(linha, "tags"))),
            "resposta": _coluna(linha, "resposta"),
            "updated_at": atualizado,
        }
        id_linha = _coluna(linha, "id")
        if id_linha:
            payload = {"id": id_linha, **payload}
        payloads.append(payload)

    if any(not p["tema"] or not p["assunto"] or not p["resposta"] for p in payloads):
        raise ErroApi(400, "csv_invalid", "CSV inválido: cada linha precisa ter pelo menos 'tema', 'assunto' e 'resposta'.")

    return payloads


def respostas_para_csv(respostas: List[Resposta]) -> str:
    linhas = [
        {
            "id": r.id,
            "tema": r.tema,
            "subtema": r.subtema,
            "assunto": r.assunto,
            "produto": r.produto,
            "canal": r.canal,
            "status": r.status,
            "tags": "|".join(r.tags),
            "resposta": r.resposta,
            "favorito": r.favorito,
            "updated_at": r.atualizado_em,
        }
        for r in respostas
    ]
    return pd.DataFrame(linhas, columns=COLUNAS_CSV).to_csv(index=False)


# === Eventos de uso ===

def registrar_evento(supabase, evento: str, resposta_id: Optional[str] = None, meta: Optional[dict] = None):
    """Grava um evento em usage_events; falhas não interrompem a operação."""
    try:
        supabase.table("usage_events").insert({
            "event": evento,
            "resposta_id": resposta_id,
            "meta": meta,
        }).execute()
    except Exception as e:
        logger.warning(f"⚠️ logEvent falhou ({evento}): {mensagem_erro(e)}")


# === Rotas ===

def _buscar_resposta(supabase, resposta_id: str) -> Resposta:
    try:
        dados = supabase.table("respostas").select("*").eq("id", resposta_id).limit(1).execute().data
    except Exception as e:
        raise ErroApi(500, "load_failed", mensagem_erro(e))
    if not dados:
        raise ErroApi(404, "not_found")
    return linha_para_resposta(dados[0])


def _payload_resposta(entrada: RespostaEntrada) -> dict:
    dados = entrada.model_dump()
    dados["tags"] = "|".join(parse_tags(entrada.tags))
    dados["updated_at"] = agora_iso()
    return dados


@router.get("")
def listar_respostas(
    busca: str = "",
    tema: str = TODOS,
    subtema: str = TODOS,
    produto: str = TODOS,
    canal: str = TODOS,
    status: str = TODOS,
    favoritos: bool = False,
    pagina: int = Query(default=1, ge=1),
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    """Lista respostas com filtros, busca, paginação, facetas e estatísticas."""
    query = supabase.table("respostas").select("*").order("updated_at", desc=True)
    if favoritos:
        query = query.eq("favorito", True)
    filtros = {"tema": tema, "subtema": subtema, "produto": produto, "canal": canal, "status": status}
    for campo, valor in filtros.items():
        if valor and valor != TODOS:
            query = query.eq(campo, valor)

    termo = (busca or "").strip()
    if termo:
        seguro = escapar_like(termo)
        query = query.or_(",".join(f"{c}.ilike.%{seguro}%" for c in CAMPOS_BUSCA))

    try:
        dados = query.execute().data or []
    except Exception as e:
        logger.error(f"❌ Erro ao carregar respostas: {mensagem_erro(e)}")
        raise ErroApi(500, "load_failed", mensagem_erro(e))

    respostas = [linha_para_resposta(l) for l in dados]
    filtradas = filtrar_respostas(respostas, termo)
    itens, pagina_atual, total_paginas = paginar(filtradas, pagina)

    return {
        "ok": True,
        "itens": [r.model_dump() for r in itens],
        "pagina": pagina_atual,
        "total_paginas": total_paginas,
        "total_filtradas": len(filtradas),
        "facetas": facetas(respostas),
        "estatisticas": estatisticas(respostas),
        "carregado_em": agora_iso(),
    }


@router.post("")
def criar_resposta(
    entrada: RespostaEntrada,
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    papel = resolver_papel(supabase, usuario.id)
    exigir_permissao(pode_escrever(papel), "Apenas Administrador e Supervisor podem salvar/editar.")

    try:
        dados = supabase.table("respostas").insert(_payload_resposta(entrada)).execute().data or []
    except Exception as e:
        raise ErroApi(500, "insert_failed", mensagem_erro(e))

    novo_id = str(dados[0].get("id")) if dados and dados[0].get("id") is not None else None
    registrar_evento(supabase, "create", novo_id)
    return {"ok": True, "id": novo_id}


@router.put("/{resposta_id}")
def atualizar_resposta(
    resposta_id: str,
    entrada: RespostaEntrada,
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    papel = resolver_papel(supabase, usuario.id)
    exigir_permissao(pode_escrever(papel), "Apenas Administrador e Supervisor podem salvar/editar.")

    try:
        supabase.table("respostas").update(_payload_resposta(entrada)).eq("id", resposta_id).execute()
    except Exception as e:
        raise ErroApi(500, "update_failed", mensagem_erro(e))

    registrar_evento(supabase, "update", resposta_id)
    return {"ok": True, "id": resposta_id}


@router.delete("/{resposta_id}")
def excluir_resposta(
    resposta_id: str,
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    papel = resolver_papel(supabase, usuario.id)
    exigir_permissao(pode_excluir(papel), "Apenas Administrador pode excluir.")

    try:
        supabase.table("respostas").delete().eq("id", resposta_id).execute()
    except Exception as e:
        raise ErroApi(500, "delete_failed", mensagem_erro(e))

    registrar_evento(supabase, "delete", resposta_id)
    return {"ok": True}


@router.post("/{resposta_id}/favorito")
def favoritar_resposta(
    resposta_id: str,
    payload: FavoritoRequest,
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    papel = resolver_papel(supabase, usuario.id)
    exigir_permissao(pode_favoritar(papel), "Você não tem permissão para favoritar.")

    try:
        supabase.rpc("set_resposta_favorito", {"p_resposta_id": resposta_id, "p_value": payload.valor}).execute()
    except Exception as e:
        raise ErroApi(500, "favorite_failed", mensagem_erro(e))

    registrar_evento(supabase, "favorite", resposta_id, {"value": payload.valor})
    return {"ok": True, "favorito": payload.valor}


@router.get("/{resposta_id}/prompt")
def prompt_resposta(
    resposta_id: str,
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    """Prompt pronto para colar no ChatGPT/Gemini, baseado na resposta oficial."""
    resposta = _buscar_resposta(supabase, resposta_id)
    registrar_evento(supabase, "prompt", resposta_id)
    return {
        "ok": True,
        "prompt": montar_prompt_ia(resposta),
        "chatgpt_url": CHATGPT_URL,
        "gemini_url": GEMINI_URL,
    }


@router.post("/{resposta_id}/eventos")
def evento_resposta(
    resposta_id: str,
    payload: EventoRequest,
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    if payload.evento not in EVENTOS_UI:
        raise ErroApi(400, "invalid_event")
    registrar_evento(supabase, payload.evento, resposta_id)
    return {"ok": True}


@router.post("/importar")
async def importar_csv(
    arquivo: UploadFile = File(...),
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    """Importa (cria/atualiza) respostas a partir de um CSV com cabeçalho."""
    papel = resolver_papel(supabase, usuario.id)
    exigir_permissao(pode_escrever(papel), "Você não tem permissão para importar.")

    conteudo = await arquivo.read()
    try:
        texto = conteudo.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ErroApi(400, "csv_parse_error", "Erro ao ler CSV. Use codificação UTF-8.")

    payloads = preparar_linhas_csv(texto)

    for inicio in range(0, len(payloads), TAMANHO_LOTE_CSV):
        lote = payloads[inicio:inicio + TAMANHO_LOTE_CSV]
        try:
            supabase.table("respostas").upsert(lote, on_conflict="id").execute()
        except Exception as e:
            logger.error(f"❌ Erro ao importar lote {inicio // TAMANHO_LOTE_CSV + 1}: {mensagem_erro(e)}")
            raise ErroApi(500, "import_failed", mensagem_erro(e))

    logger.info(f"📥 Importação concluída! Linhas: {len(payloads)}")
    registrar_evento(supabase, "csv_import", None, {"rows": len(payloads)})
    return {"ok": True, "linhas": len(payloads)}


@router.get("/exportar")
def exportar_csv(
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    try:
        dados = supabase.table("respostas").select("*").order("updated_at", desc=True).execute().data or []
    except Exception as e:
        raise ErroApi(500, "load_failed", mensagem_erro(e))

    csv_texto = respostas_para_csv([linha_para_resposta(l) for l in dados])
    return Response(
        content=csv_texto.encode("utf-8"),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=respostas.csv"},
    )


@router.get("/auditoria")
def listar_auditoria(
    usuario_filtro: Optional[str] = Query(default=None, alias="usuario"),
    acao: Optional[str] = None,
    busca: str = "",
    usuario: UsuarioAtual = Depends(usuario_atual),
    supabase=Depends(get_user_client),
):
    """Histórico de alterações na biblioteca de respostas (somente admin)."""
    exigir_admin(supabase, usuario.id)

    p_user = usuario_filtro.strip() if usuario_filtro and usuario_filtro.strip() and usuario_filtro != TODOS else None
    p_action = acao.strip() if acao and acao.strip() and acao != TODOS else None

    try:
        linhas = supabase.rpc("list_respostas_audit", {
            "p_user": p_user,
            "p_action": p_action,
            "p_limit": LIMITE_AUDITORIA,
        }).execute().data or []
    except Exception as e:
        raise ErroApi(500, "audit_failed", mensagem_erro(e))

    usuarios = []
    for a in linhas:
        if a.get("changed_by") and a["changed_by"] not in usuarios:
            usuarios.append(a["changed_by"])

    filtradas = filtrar_auditoria(linhas, busca)
    return {
        "ok": True,
        "usuarios": [TODOS, *usuarios],
        "linhas": [{**a, "alteracoes": diff_importante(a.get("old_row"), a.get("new_row"))} for a in filtradas],
    }
