import logging
from dataclasses import dataclass, field
from typing import Optional
from fastapi import APIRouter, Depends
from backend import config
from backend.clients import exigir_configuracao, exigir_token, get_user_client, get_anon_client
from backend.domain.erros import ErroApi, mensagem_erro
from backend.domain.models import LoginRequest, EsqueciSenhaRequest, RedefinirSenhaRequest

router = APIRouter()
logger = logging.getLogger(__name__)

PAPEIS = ("admin", "supervisor", "operador", "leitor")
PAPEIS_ATRIBUIVEIS = ("admin", "supervisor", "leitor")
# Na tela de status todo usuário autenticado atua no mínimo como operador
PAPEL_MINIMO_STATUS = "operador"
SENHA_MINIMA = 6


@dataclass
class UsuarioAtual:
    id: str
    email: str = ""
    user_metadata: dict = field(default_factory=dict)


def _primeira_linha(resposta) -> Optional[dict]:
    dados = getattr(resposta, "data", None) if resposta is not None else None
    if isinstance(dados, list):
        return dados[0] if dados else None
    return dados or None


# === Sessão ===

def validar_sessao(supabase, token: str) -> UsuarioAtual:
    """Confere o JWT no Supabase Auth e devolve o usuário chamador."""
    try:
        resposta = supabase.auth.get_user(token)
    except Exception as e:
        raise ErroApi(401, "invalid_session", mensagem_erro(e))

    user = getattr(resposta, "user", None) if resposta else None
    if not user or not getattr(user, "id", None):
        raise ErroApi(401, "invalid_session", "")

    return UsuarioAtual(
        id=str(user.id),
        email=str(getattr(user, "email", "") or ""),
        user_metadata=dict(getattr(user, "user_metadata", None) or {}),
    )


def usuario_atual(token: str = Depends(exigir_token), supabase=Depends(get_user_client)) -> UsuarioAtual:
    return validar_sessao(supabase, token)


# === Papéis ===

def normalizar_papel(valor) -> str:
    v = str(valor or "").strip().lower()
    if v == "admin":
        return "admin"
    if v == "supervisor":
        return "supervisor"
    if v in ("operador", "operator"):
        return "operador"
    return "leitor"


def resolver_papel_candidatos(*valores) -> str:
    normalizados = {normalizar_papel(v) for v in valores}
    for papel in PAPEIS:
        if papel in normalizados:
            return papel
    return "leitor"


def papel_no_status(papel) -> str:
    return resolver_papel_candidatos(papel, PAPEL_MINIMO_STATUS)


def eh_papel_admin(valor) -> bool:
    return str(valor or "").strip().lower() == "admin"


def _buscar_papel_tabela(supabase, user_id: str) -> Optional[str]:
    linha = _primeira_linha(
        supabase.table("user_roles").select("role").eq("user_id", user_id).limit(1).execute()
    )
    return linha.get("role") if linha else None


def _buscar_papeis_perfil(supabase, user_id: str) -> list:
    """Esquemas antigos guardam o papel em role, perfil ou tipo."""
    try:
        linha = _primeira_linha(
            supabase.table("user_profiles")
            .select("role,perfil,tipo")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.warning(f"⚠️ Não foi possível ler papel em user_profiles: {mensagem_erro(e)}")
        return []
    if not linha:
        return []
    return [linha.get(c) for c in ("role", "perfil", "tipo") if linha.get(c)]


def resolver_papel(supabase, user_id: str, padrao: str = "leitor") -> str:
    """Resolve o papel do usuário combinando todas as fontes conhecidas."""
    candidatos = []
    try:
        papel_tabela = _buscar_papel_tabela(supabase, user_id)
        if papel_tabela:
            candidatos.append(papel_tabela)
    except Exception as e:
        logger.warning(f"⚠️ Erro ao carregar role (user_roles): {mensagem_erro(e)}")

    candidatos.extend(_buscar_papeis_perfil(supabase, user_id))

    if not candidatos:
        try:
            dados = supabase.rpc("user_role", {}).execute().data
            if dados:
                candidatos.append(dados[0] if isinstance(dados, list) else dados)
        except Exception as e:
            logger.warning(f"⚠️ Erro ao carregar role (rpc user_role): {mensagem_erro(e)}")

    return resolver_papel_candidatos(*candidatos, padrao)


def verificar_admin(supabase, user_id: str) -> bool:
    """
    Cadeia de verificação de administrador:
    user_roles -> user_profiles (role/perfil/tipo) -> rpc is_admin.
    """
    erro_tabela = None
    try:
        if eh_papel_admin(_buscar_papel_tabela(supabase, user_id)):
            return True
    except Exception as e:
        erro_tabela = mensagem_erro(e)

    if any(eh_papel_admin(p) for p in _buscar_papeis_perfil(supabase, user_id)):
        return True

    try:
        dados = supabase.rpc("is_admin", {"p_user_id": user_id}).execute().data
    except Exception as e:
        detalhe = mensagem_erro(e)
        if erro_tabela:
            detalhe = f"{erro_tabela} | {detalhe}"
        raise ErroApi(500, "admin_check_failed", detalhe)

    if isinstance(dados, list):
        dados = dados[0] if dados else False
    return bool(dados)


def exigir_admin(supabase, user_id: str):
    if not verificar_admin(supabase, user_id):
        raise ErroApi(403, "not_admin")


# === Permissões ===

def pode_escrever(papel: str) -> bool:
    return papel in ("admin", "supervisor")


def pode_excluir(papel: str) -> bool:
    return papel == "admin"


def pode_favoritar(papel: str) -> bool:
    return papel in ("admin", "supervisor")


def pode_revisar(papel: str) -> bool:
    return papel in ("admin", "supervisor")


def exigir_permissao(permitido: bool, mensagem: str):
    if not permitido:
        raise ErroApi(403, "not_allowed", mensagem)


def rotulo_papel(papel: str) -> str:
    if papel == "admin":
        return "Administrador"
    if papel == "supervisor":
        return "Supervisor"
    return "Operador"


def rotulo_permissoes(papel: str) -> str:
    if papel == "admin":
        return "Administrador (tudo + excluir + gerir usuários)"
    if papel == "supervisor":
        return "Supervisor (criar/editar/favoritar)"
    return "Operador (leitura)"


def nome_exibicao(usuario: UsuarioAtual) -> str:
    meta = usuario.user_metadata or {}
    for chave in ("full_name", "name", "display_name"):
        valor = str(meta.get(chave) or "").strip()
        if valor:
            return valor
    if usuario.email:
        return usuario.email.split("@")[0]
    return "Usuário"


# === Rotas ===

@router.post("/login", dependencies=[Depends(exigir_configuracao)])
def login(payload: LoginRequest, supabase=Depends(get_anon_client)):
    """Autentica com e-mail e senha e devolve o token de acesso."""
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise ErroApi(400, "missing_credentials")

    try:
        resposta = supabase.auth.sign_in_with_password({"email": email, "password": payload.password})
    except Exception as e:
        raise ErroApi(401, "invalid_credentials", mensagem_erro(e))

    sessao = getattr(resposta, "session", None)
    user = getattr(resposta, "user", None)
    if not sessao or not user:
        raise ErroApi(401, "invalid_credentials", "")

    logger.info(f"🔐 Login realizado: {email}")
    return {
        "ok": True,
        "access_token": sessao.access_token,
        "refresh_token": sessao.refresh_token,
        "user_id": str(user.id),
        "email": str(getattr(user, "email", "") or email),
    }


@router.post("/forgot-password", dependencies=[Depends(exigir_configuracao)])
def esqueci_senha(payload: EsqueciSenhaRequest, supabase=Depends(get_anon_client)):
    """Envia o e-mail com o link de redefinição de senha."""
    email = payload.email.strip().lower()
    if not email:
        raise ErroApi(400, "missing_email", "Digite seu e-mail para receber o link de redefinição.")

    try:
        supabase.auth.reset_password_for_email(email, {"redirect_to": config.RESET_REDIRECT_URL})
    except Exception as e:
        raise ErroApi(400, "reset_failed", mensagem_erro(e))

    return {"ok": True}


@router.post("/reset-password", dependencies=[Depends(exigir_configuracao)])
def redefinir_senha(payload: RedefinirSenhaRequest, supabase=Depends(get_anon_client)):
    """Valida o token de recuperação e grava a nova senha."""
    link_invalido = "Link inválido ou expirado. Volte e solicite 'Esqueci minha senha' novamente."
    if not payload.token_hash.strip():
        raise ErroApi(401, "invalid_session", link_invalido)
    if len(payload.password) < SENHA_MINIMA:
        raise ErroApi(400, "invalid_password", "A senha deve ter pelo menos 6 caracteres.")
    if payload.password != payload.password2:
        raise ErroApi(400, "password_mismatch", "As senhas não conferem.")

    try:
        verificado = supabase.auth.verify_otp({"type": "recovery", "token_hash": payload.token_hash.strip()})
    except Exception as e:
        logger.warning(f"⚠️ Token de recuperação recusado: {mensagem_erro(e)}")
        raise ErroApi(401, "invalid_session", link_invalido)
    if not getattr(verificado, "session", None):
        raise ErroApi(401, "invalid_session", link_invalido)

    try:
        supabase.auth.update_user({"password": payload.password})
    except Exception as e:
        raise ErroApi(400, "update_password_failed", mensagem_erro(e))

    supabase.auth.sign_out()
    logger.info("🔑 Senha redefinida com sucesso.")
    return {"ok": True}


@router.get("/me")
def quem_sou_eu(usuario: UsuarioAtual = Depends(usuario_atual), supabase=Depends(get_user_client)):
    """Dados do usuário logado, papel e permissões."""
    papel = resolver_papel(supabase, usuario.id)

    nome = ""
    try:
        perfil = _primeira_linha(
            supabase.table("user_profiles").select("nome").eq("user_id", usuario.id).limit(1).execute()
        )
        nome = str((perfil or {}).get("nome") or "")
    except Exception as e:
        logger.warning(f"⚠️ Erro ao carregar perfil: {mensagem_erro(e)}")

    return {
        "ok": True,
        "user_id": usuario.id,
        "email": usuario.email,
        "nome": nome,
        "display_name": nome or nome_exibicao(usuario),
        "role": papel,
        "role_label": rotulo_papel(papel),
        "role_status": papel_no_status(papel),
        "permissoes": rotulo_permissoes(papel),
        "pode_escrever": pode_escrever(papel),
        "pode_excluir": pode_excluir(papel),
        "pode_favoritar": pode_favoritar(papel),
    }
