import logging
from typing import Optional
from fastapi import Depends, Header
from openai import OpenAI
from supabase import create_client, Client, ClientOptions
from backend import config
from backend.domain.erros import ErroApi

logger = logging.getLogger(__name__)

# Variáveis globais
_admin_client = None
_openai_client = None


def _opcoes(headers: Optional[dict] = None) -> ClientOptions:
    # Sem sessão persistida: cada request traz o próprio token
    return ClientOptions(
        headers=headers or {},
        auto_refresh_token=False,
        persist_session=False,
    )


def get_anon_client() -> Client:
    """Cliente com a chave anon, usado para login e recuperação de senha."""
    return create_client(config.SUPABASE_URL, config.SUPABASE_ANON_KEY, options=_opcoes())


def criar_cliente_usuario(token: str) -> Client:
    """Cliente que age como o usuário logado (RLS aplicada pelo Supabase)."""
    return create_client(
        config.SUPABASE_URL,
        config.SUPABASE_ANON_KEY,
        options=_opcoes({"Authorization": f"Bearer {token}"}),
    )


def get_admin_client() -> Client:
    """Retorna cliente Supabase com service role (somente no servidor)."""
    global _admin_client
    if not _admin_client:
        _admin_client = create_client(
            config.SUPABASE_URL,
            config.SUPABASE_SERVICE_ROLE_KEY,
            options=_opcoes(),
        )
    return _admin_client


def get_openai_client() -> Optional[OpenAI]:
    """Retorna cliente OpenAI inicializado, ou None sem OPENAI_API_KEY."""
    global _openai_client
    if not config.OPENAI_API_KEY:
        return None
    if not _openai_client:
        _openai_client = OpenAI(api_key=config.OPENAI_API_KEY)
    return _openai_client


# 🔗 Dependências FastAPI

def exigir_configuracao():
    erro = config.faltando_configuracao()
    if erro:
        raise ErroApi(500, erro)


def exigir_configuracao_admin():
    erro = config.faltando_configuracao(exigir_service_role=True)
    if erro:
        raise ErroApi(500, erro)


def exigir_token(
    authorization: str = Header(default=""),
    _config=Depends(exigir_configuracao),
) -> str:
    """Lê o header Authorization e devolve o JWT sem o prefixo Bearer."""
    valor = (authorization or "").strip()
    if not valor:
        raise ErroApi(401, "missing_authorization")
    if valor.lower().startswith("bearer "):
        valor = valor[7:].strip()
    if not valor:
        raise ErroApi(401, "missing_authorization")
    return valor


def get_user_client(token: str = Depends(exigir_token)) -> Client:
    return criar_cliente_usuario(token)


def get_service_client() -> Client:
    return get_admin_client()


async def connect_clients():
    """Verifica a configuração e prepara os clientes de longa duração."""
    erro = config.faltando_configuracao(exigir_service_role=True)
    if erro:
        logger.warning(f"⚠️ Configuração incompleta do Supabase: {erro}")
    else:
        logger.info("✅ Configuração do Supabase encontrada.")

    if get_openai_client():
        logger.info("🤖 OpenAI configurado.")
    else:
        logger.warning("⚠️ OPENAI_API_KEY não configurada; /api/ai/answer responderá 500.")


async def close_clients():
    """Descarta os clientes em cache."""
    global _admin_client, _openai_client
    _admin_client = None
    _openai_client = None
