import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from backend.clients import exigir_configuracao_admin, exigir_token, get_user_client, get_service_client
from backend.domain.auth import PAPEIS_ATRIBUIVEIS, SENHA_MINIMA, validar_sessao, exigir_admin
from backend.domain.erros import ErroApi, mensagem_erro
from backend.domain.models import (
    CriarUsuarioRequest,
    ConvidarUsuarioRequest,
    UsuarioIdRequest,
    DefinirPapelRequest,
    AtualizarUsuarioRequest,
    UsuarioView,
)

# A checagem de service role roda antes de qualquer outra dependência
router = APIRouter(dependencies=[Depends(exigir_configuracao_admin)])
logger = logging.getLogger(__name__)

USUARIOS_POR_PAGINA = 200


def _texto(valor) -> str:
    return str(valor if valor is not None else "").strip()


def _validar_papel(papel: str):
    if papel not in PAPEIS_ATRIBUIVEIS:
        raise ErroApi(400, "invalid_role")


def _data_iso(valor) -> str:
    if not valor:
        return ""
    if hasattr(valor, "isoformat"):
        return valor.isoformat()
    return str(valor)


def filtrar_usuarios(usuarios: List[dict], q: Optional[str]) -> List[dict]:
    termo = (q or "").strip().lower()
    if not termo:
        return usuarios
    return [
        u for u in usuarios
        if termo in f"{u.get('nome', '')} {u.get('email', '')} {u.get('telefone', '')} {u.get('role', '')}".lower()
    ]


@router.post("/create-user")
def criar_usuario(
    payload: CriarUsuarioRequest,
    token: str = Depends(exigir_token),
    supabase=Depends(get_user_client),
    admin=Depends(get_service_client),
):
    """Cria um usuário com senha definida pelo administrador."""
    try:
        email = _texto(payload.email).lower()
        nome = _texto(payload.nome)
        telefone = _texto(payload.telefone)
        papel = _texto(payload.role if payload.role is not None else "leitor")
        senha = _texto(payload.password)

        if not email:
            raise ErroApi(400, "missing_email")
        if not senha or len(senha) < SENHA_MINIMA:
            raise ErroApi(400, "invalid_password", "A senha deve ter no mínimo 6 caracteres")
        _validar_papel(papel)

        me = validar_sessao(supabase, token)
        exigir_admin(supabase, me.id)

        try:
            criado = admin.auth.admin.create_user({
                "email": email,
                "password": senha,
                "email_confirm": True,
                "user_metadata": {"nome": nome, "telefone": telefone},
            })
        except Exception as e:
            raise ErroApi(400, "create_user_failed", mensagem_erro(e))

        novo_id = getattr(getattr(criado, "user", None), "id", None)
        if not novo_id:
            raise ErroApi(500, "create_user_no_id")
        novo_id = str(novo_id)

        try:
            admin.rpc("upsert_user_profile", {"p_user_id": novo_id, "p_nome": nome, "p_telefone": telefone}).execute()
        except Exception as e:
            raise ErroApi(500, "profile_failed", mensagem_erro(e))

        try:
            admin.rpc("set_user_role", {"p_user_id": novo_id, "p_role": papel}).execute()
        except Exception as e:
            raise ErroApi(500, "set_role_failed", mensagem_erro(e))

        logger.info(f"✅ Usuário criado: {email} ({papel})")
        return {"ok": True, "user_id": novo_id}
    except ErroApi:
        raise
    except Exception as e:
        logger.error(f"❌ Erro inesperado ao criar usuário: {str(e)}")
        raise ErroApi(500, "unexpected", str(e))


@router.post("/invite-user")
def convidar_usuario(
    payload: ConvidarUsuarioRequest,
    token: str = Depends(exigir_token),
    supabase=Depends(get_user_client),
    admin=Depends(get_service_client),
):
    """Envia convite por e-mail; o usuário define a senha ao aceitar."""
    try:
        email = _texto(payload.email).lower()
        nome = _texto(payload.nome)
        telefone = _texto(payload.telefone)
        papel = _texto(payload.role if payload.role is not None else "leitor")

        me = validar_sessao(supabase, token)
        exigir_admin(supabase, me.id)

        if not email:
            raise ErroApi(400, "missing_email")
        _validar_papel(papel)

        try:
            convite = admin.auth.admin.invite_user_by_email(email, {"data": {"nome": nome, "telefone": telefone}})
        except Exception as e:
            raise ErroApi(400, "invite_failed", mensagem_erro(e))

        convidado_id = getattr(getattr(convite, "user", None), "id", None)
        if not convidado_id:
            raise ErroApi(500, "invite_no_user_id")
        convidado_id = str(convidado_id)

        # Perfil e papel podem ser ajustados depois pela tela de administração
        try:
            admin.rpc("upsert_user_profile", {"p_user_id": convidado_id, "p_nome": nome, "p_telefone": telefone}).execute()
        except Exception as e:
            logger.warning(f"⚠️ Convite enviado, mas o perfil não foi gravado: {mensagem_erro(e)}")

        try:
            admin.rpc("set_user_role", {"p_user_id": convidado_id, "p_role": papel}).execute()
        except Exception as e:
            logger.warning(f"⚠️ Convite enviado, mas o papel não foi gravado: {mensagem_erro(e)}")

        logger.info(f"📨 Convite enviado para {email}")
        return {"ok": True, "user_id": convidado_id}
    except ErroApi:
        raise
    except Exception as e:
        logger.error(f"❌ Erro inesperado ao convidar usuário: {str(e)}")
        raise ErroApi(500, "unexpected", str(e))


@router.post("/delete-user")
def excluir_usuario(
    payload: UsuarioIdRequest,
    token: str = Depends(exigir_token),
    supabase=Depends(get_user_client),
    admin=Depends(get_service_client),
):
    """Remove papel, perfil e a conta de autenticação do usuário."""
    try:
        user_id = _texto(payload.user_id)
        if not user_id:
            raise ErroApi(400, "missing_user_id")

        me = validar_sessao(supabase, token)
        if me.id == user_id:
            raise ErroApi(400, "cannot_delete_self")

        exigir_admin(supabase, me.id)

        try:
            admin.table("user_roles").delete().eq("user_id", user_id).execute()
        except Exception as e:
            raise ErroApi(500, "delete_role_failed", mensagem_erro(e))

        try:
            admin.table("user_profiles").delete().eq("user_id", user_id).execute()
        except Exception as e:
            raise ErroApi(500, "delete_profile_failed", mensagem_erro(e))

        try:
            admin.auth.admin.delete_user(user_id)
        except Exception as e:
            raise ErroApi(500, "delete_auth_failed", mensagem_erro(e))

        logger.info(f"🗑️ Usuário excluído: {user_id}")
        return {"ok": True}
    except ErroApi:
        raise
    except Exception as e:
        logger.error(f"❌ Erro inesperado ao excluir usuário: {str(e)}")
        raise ErroApi(500, "unexpected", str(e))


@router.post("/set-role")
def definir_papel(
    payload: DefinirPapelRequest,
    token: str = Depends(exigir_token),
    supabase=Depends(get_user_client),
    admin=Depends(get_service_client),
):
    """Altera o nível de acesso de um usuário."""
    try:
        user_id = _texto(payload.user_id)
        papel = _texto(payload.role)

        if not user_id:
            raise ErroApi(400, "missing_user_id")
        _validar_papel(papel)

        me = validar_sessao(supabase, token)
        exigir_admin(supabase, me.id)

        try:
            admin.rpc("set_user_role", {"p_user_id": user_id, "p_role": papel}).execute()
        except Exception as e:
            raise ErroApi(500, "set_role_failed", mensagem_erro(e))

        logger.info(f"🔁 Papel de {user_id} alterado para {papel}")
        return {"ok": True}
    except ErroApi:
        raise
    except Exception as e:
        logger.error(f"❌ Erro inesperado ao alterar papel: {str(e)}")
        raise ErroApi(500, "unexpected", str(e))


@router.post("/update-user")
def atualizar_usuario(
    payload: AtualizarUsuarioRequest,
    token: str = Depends(exigir_token),
    supabase=Depends(get_user_client),
    admin=Depends(get_service_client),
):
    """Atualiza nome e telefone no perfil e nos metadados da conta."""
    try:
        user_id = _texto(payload.user_id)
        nome = _texto(payload.nome)
        telefone = _texto(payload.telefone)

        if not user_id:
            raise ErroApi(400, "missing_user_id")

        me = validar_sessao(supabase, token)
        exigir_admin(supabase, me.id)

        try:
            admin.rpc("upsert_user_profile", {"p_user_id": user_id, "p_nome": nome, "p_telefone": telefone}).execute()
        except Exception as e:
            erro_rpc = mensagem_erro(e)
            logger.warning(f"⚠️ upsert_user_profile falhou, gravando direto em user_profiles: {erro_rpc}")
            try:
                admin.table("user_profiles").upsert(
                    {"user_id": user_id, "nome": nome, "telefone": telefone},
                    on_conflict="user_id",
                ).execute()
            except Exception as e2:
                raise ErroApi(500, "update_profile_failed", f"{erro_rpc} | fallback: {mensagem_erro(e2)}")

        try:
            admin.auth.admin.update_user_by_id(user_id, {"user_metadata": {"nome": nome, "telefone": telefone}})
        except Exception as e:
            raise ErroApi(500, "update_metadata_failed", mensagem_erro(e))

        return {"ok": True}
    except ErroApi:
        raise
    except Exception as e:
        logger.error(f"❌ Erro inesperado ao atualizar usuário: {str(e)}")
        raise ErroApi(500, "unexpected", str(e))


@router.get("/users")
def listar_usuarios(
    q: Optional[str] = Query(default=None),
    token: str = Depends(exigir_token),
    supabase=Depends(get_user_client),
    admin=Depends(get_service_client),
):
    """Lista todos os usuários com perfil e papel, mais recentes primeiro."""
    try:
        me = validar_sessao(supabase, token)
        exigir_admin(supabase, me.id)

        usuarios = []
        pagina = 1
        while True:
            try:
                lote = admin.auth.admin.list_users(page=pagina, per_page=USUARIOS_POR_PAGINA) or []
            except Exception as e:
                raise ErroApi(500, "list_users_failed", mensagem_erro(e))

            if not lote:
                break

            ids = [str(u.id) for u in lote]

            try:
                perfis = admin.table("user_profiles").select("user_id,nome,telefone").in_("user_id", ids).execute().data or []
            except Exception as e:
                raise ErroApi(500, "profiles_failed", mensagem_erro(e))

            try:
                papeis = admin.table("user_roles").select("user_id,role").in_("user_id", ids).execute().data or []
            except Exception as e:
                raise ErroApi(500, "roles_failed", mensagem_erro(e))

            perfil_por_id = {str(p.get("user_id")): p for p in perfis}
            papel_por_id = {str(r.get("user_id")): r for r in papeis}

            for u in lote:
                uid = str(u.id)
                perfil = perfil_por_id.get(uid) or {}
                meta = getattr(u, "user_metadata", None) or {}
                nome = perfil.get("nome")
                telefone = perfil.get("telefone")
                usuarios.append(UsuarioView(
                    user_id=uid,
                    email=str(getattr(u, "email", "") or ""),
                    nome=str(nome if nome is not None else meta.get("nome") or ""),
                    telefone=str(telefone if telefone is not None else meta.get("telefone") or ""),
                    role=str((papel_por_id.get(uid) or {}).get("role") or "leitor"),
                    created_at=_data_iso(getattr(u, "created_at", "")),
                ).model_dump())

            if len(lote) < USUARIOS_POR_PAGINA:
                break
            pagina += 1

        usuarios.sort(key=lambda u: u["created_at"], reverse=True)
        return {"ok": True, "users": filtrar_usuarios(usuarios, q)}
    except ErroApi:
        raise
    except Exception as e:
        logger.error(f"❌ Erro inesperado ao listar usuários: {str(e)}")
        raise ErroApi(500, "unexpected", str(e))
