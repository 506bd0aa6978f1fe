import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import streamlit as st
import pandas as pd
from datetime import datetime
from frontend import api_client as api
from frontend.api_client import mensagem
from backend.domain.status_regras import (
    PROBLEMATICAS,
    PRIORIDADES,
    OPCOES_NOTIFICACAO,
    PREFIXO_ATUALIZACAO,
    formatar_cpf,
    so_digitos,
    situacao_finaliza,
    esta_concluido,
)

st.set_page_config(page_title="Base de Respostas", layout="wide")

MESES = ["Jan", "Fev", "Mar", "Abr", "Mai", "Jun", "Jul", "Ago", "Set", "Out", "Nov", "Dez"]
TODOS = "Todos"

# === Configurações Iniciais ===
if "token" not in st.session_state:
    st.session_state.token = None
if "me" not in st.session_state:
    st.session_state.me = None
if "pagina_respostas" not in st.session_state:
    st.session_state.pagina_respostas = 1
if "editando_resposta" not in st.session_state:
    st.session_state.editando_resposta = None
if "editando_status" not in st.session_state:
    st.session_state.editando_status = None
if "respostas_ia" not in st.session_state:
    st.session_state.respostas_ia = {}


def formatar_data(iso):
    if not iso:
        return ""
    try:
        return datetime.fromisoformat(str(iso).replace("Z", "+00:00")).strftime("%d/%m/%Y %H:%M")
    except ValueError:
        return str(iso)


def sair():
    st.session_state.token = None
    st.session_state.me = None
    st.rerun()


# === Login e redefinição de senha ===
def tela_reset(token_hash):
    st.subheader("🔑 Redefinir senha")
    senha = st.text_input("Nova senha", type="password")
    senha2 = st.text_input("Confirmar nova senha", type="password")
    if st.button("Salvar nova senha"):
        resultado = api.redefinir_senha(token_hash, senha, senha2)
        if resultado.get("ok"):
            st.success("Senha alterada com sucesso! Faça login novamente.")
            st.query_params.clear()
        else:
            st.error(mensagem(resultado))


def tela_login():
    st.subheader("🔐 Entrar")
    email = st.text_input("E-mail")
    senha = st.text_input("Senha", type="password")

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Entrar", use_container_width=True):
            resultado = api.login(email, senha)
            if resultado.get("ok"):
                st.session_state.token = resultado["access_token"]
                st.rerun()
            else:
                st.error(mensagem(resultado, "Login inválido."))
    with col2:
        if st.button("Esqueci minha senha", use_container_width=True):
            resultado = api.esqueci_senha(email)
            if resultado.get("ok"):
                st.success("Enviamos um link para redefinir sua senha. Verifique seu e-mail.")
            else:
                st.error(mensagem(resultado))


if st.query_params.get("modo") == "reset":
    tela_reset(st.query_params.get("token_hash", ""))
    st.stop()

if not st.session_state.token:
    tela_login()
    st.stop()

if st.session_state.me is None:
    me = api.carregar_me(st.session_state.token)
    if not me.get("ok"):
        st.session_state.token = None
        st.error(mensagem(me, "Sessão expirada. Entre novamente."))
        st.stop()
    st.session_state.me = me

me = st.session_state.me
token = st.session_state.token
eh_admin = me.get("role") == "admin"
eh_revisor = me.get("role") in ("admin", "supervisor")


# === Estrutura do Menu ===
def renderizar_menu():
    st.sidebar.title("Navegação")
    opcoes = {"📚 Respostas": "respostas", "📋 Status": "status"}
    if eh_admin:
        opcoes["⚙️ Administração"] = "admin"
    escolha = st.sidebar.radio("Escolha a seção:", list(opcoes.keys()))

    st.sidebar.markdown("---")
    st.sidebar.markdown(f"**{me.get('display_name')}**")
    st.sidebar.caption(me.get("permissoes", ""))
    if st.sidebar.button("Sair"):
        sair()
    return opcoes[escolha]


modo_ativo = renderizar_menu()


# === Respostas ===
def formulario_resposta(inicial=None):
    inicial = inicial or {}
    with st.form("form_resposta"):
        st.markdown("### ✏️ " + ("Editar resposta" if inicial.get("id") else "Nova resposta"))
        col1, col2, col3 = st.columns(3)
        tema = col1.text_input("Tema", value=inicial.get("tema", ""))
        subtema = col2.text_input("Subtema", value=inicial.get("subtema", ""))
        produto = col3.text_input("Produto", value=inicial.get("produto", ""))
        assunto = st.text_input("Assunto", value=inicial.get("assunto", ""))
        col4, col5 = st.columns(2)
        canal = col4.text_input("Canal", value=inicial.get("canal", "Chat"))
        status_opcoes = ["Ativa", "Em revisão", "Arquivada"]
        status = col5.selectbox(
            "Status",
            status_opcoes,
            index=status_opcoes.index(inicial["status"]) if inicial.get("status") in status_opcoes else 0,
        )
        tags = st.text_input("Tags (separadas por |)", value="|".join(inicial.get("tags", [])))
        texto = st.text_area("Resposta", value=inicial.get("resposta", ""), height=200)

        col_salvar, col_cancelar = st.columns(2)
        salvar = col_salvar.form_submit_button("Salvar", use_container_width=True)
        cancelar = col_cancelar.form_submit_button("Cancelar", use_container_width=True)

    if cancelar:
        st.session_state.editando_resposta = None
        st.rerun()
    if salvar:
        dados = {
            "tema": tema, "subtema": subtema, "assunto": assunto, "produto": produto,
            "canal": canal, "status": status, "tags": tags, "resposta": texto,
            "favorito": bool(inicial.get("favorito")),
        }
        resultado = api.salvar_resposta(token, dados, inicial.get("id"))
        if resultado.get("ok"):
            st.session_state.editando_resposta = None
            st.success("Resposta salva!")
            st.rerun()
        else:
            st.error(mensagem(resultado, "Erro ao salvar."))


def cartao_resposta(r):
    with st.container(border=True):
        estrela = "⭐ " if r["favorito"] else ""
        st.markdown(f"**{estrela}{r['assunto']}**")
        st.caption(f"{r['tema']} › {r['subtema']} | {r['produto']} | {r['canal']} | {r['status']} | {formatar_data(r['atualizado_em'])}")
        if r["tags"]:
            st.caption(" ".join(f"`{t}`" for t in r["tags"]))

        chave_ler = f"ler_{r['id']}"

        def ao_expandir():
            if st.session_state.get(chave_ler):
                api.registrar_evento(token, r["id"], "view")

        if st.toggle("Ler mais", key=chave_ler, on_change=ao_expandir):
            st.code(r["resposta"], language=None)
            st.caption("Use o ícone de cópia para copiar o texto.")

            col1, col2, col3, col4 = st.columns(4)
            if col1.button("🧠 Prompt IA", key=f"prompt_{r['id']}"):
                prompt = api.carregar_prompt_resposta(token, r["id"])
                if prompt.get("ok"):
                    st.code(prompt["prompt"], language=None)
                    st.markdown(f"[Abrir ChatGPT]({prompt['chatgpt_url']}) | [Abrir Gemini]({prompt['gemini_url']})")
                else:
                    st.error(mensagem(prompt))
            if col2.button("🤖 Gerar com IA", key=f"ia_{r['id']}"):
                prompt = api.carregar_prompt_resposta(token, r["id"])
                with st.spinner("Elaborando resposta..."):
                    gerado = api.gerar_resposta_ia(prompt.get("prompt", ""))
                if gerado.get("answer") is not None:
                    st.session_state.respostas_ia[r["id"]] = gerado["answer"]
                else:
                    st.error(gerado.get("error") or mensagem(gerado))
            if me.get("pode_favoritar") and col3.button("⭐ Favorito", key=f"fav_{r['id']}"):
                resultado = api.favoritar_resposta(token, r["id"], not r["favorito"])
                if resultado.get("ok"):
                    st.rerun()
                st.error(mensagem(resultado))
            if me.get("pode_escrever") and col4.button("✏️ Editar", key=f"edit_{r['id']}"):
                st.session_state.editando_resposta = r
                st.rerun()

            if r["id"] in st.session_state.respostas_ia:
                st.markdown("**Resposta gerada:**")
                st.code(st.session_state.respostas_ia[r["id"]], language=None)

            if me.get("pode_excluir"):
                confirmar = st.checkbox("Confirmo a exclusão", key=f"conf_del_{r['id']}")
                if st.button("🗑️ Excluir", key=f"del_{r['id']}", disabled=not confirmar):
                    resultado = api.excluir_resposta(token, r["id"])
                    if resultado.get("ok"):
                        st.rerun()
                    st.error(mensagem(resultado))


def tela_respostas():
    st.subheader("📚 Biblioteca de Respostas")

    if st.session_state.editando_resposta is not None:
        formulario_resposta(st.session_state.editando_resposta)
        return

    busca = st.text_input("Buscar", placeholder="Tema, assunto, texto ou tags")
    dados = api.listar_respostas(token, busca=busca, pagina=st.session_state.pagina_respostas)
    if not dados.get("ok"):
        st.error(mensagem(dados, "Erro ao carregar respostas."))
        return

    facetas = dados["facetas"]
    colunas = st.columns(6)
    filtros = {}
    for coluna, campo in zip(colunas, ("tema", "subtema", "produto", "canal", "status")):
        filtros[campo] = coluna.selectbox(campo.capitalize(), facetas.get(campo, [TODOS]))
    favoritos = colunas[5].checkbox("Só favoritas")

    if any(v != TODOS for v in filtros.values()) or favoritos:
        dados = api.listar_respostas(
            token, busca=busca, favoritos=favoritos, pagina=st.session_state.pagina_respostas, **filtros
        )
        if not dados.get("ok"):
            st.error(mensagem(dados, "Erro ao carregar respostas."))
            return

    stats = dados["estatisticas"]
    c1, c2, c3, c4, c5 = st.columns(5)
    c1.metric("Total", stats["total"])
    c2.metric("Ativas", stats["ativas"])
    c3.metric("Em revisão", stats["em_revisao"])
    c4.metric("Arquivadas", stats["arquivadas"])
    c5.metric("Favoritas", stats["favoritas"])

    if me.get("pode_escrever"):
        col_nova, col_imp, col_exp = st.columns(3)
        if col_nova.button("➕ Nova resposta", use_container_width=True):
            st.session_state.editando_resposta = {}
            st.rerun()
        with col_imp.popover("📥 Importar CSV", use_container_width=True):
            arquivo = st.file_uploader("Arquivo CSV", type=["csv"])
            if arquivo and st.button("Importar"):
                resultado = api.importar_csv(token, arquivo.name, arquivo.getvalue())
                if resultado.get("ok"):
                    st.success(f"Importação concluída! Linhas: {resultado['linhas']}")
                else:
                    st.error(mensagem(resultado, "Erro ao importar."))
        csv_bytes = api.exportar_csv(token)
        if csv_bytes is not None:
            col_exp.download_button("📤 Exportar CSV", data=csv_bytes, file_name="respostas.csv",
                                    mime="text/csv", use_container_width=True)

    st.caption(f"{dados['total_filtradas']} resultado(s)")
    for r in dados["itens"]:
        cartao_resposta(r)

    col_ant, col_pag, col_prox = st.columns([1, 2, 1])
    if col_ant.button("◀ Anterior", disabled=dados["pagina"] <= 1):
        st.session_state.pagina_respostas = dados["pagina"] - 1
        st.rerun()
    col_pag.markdown(f"Página {dados['pagina']} de {dados['total_paginas']}")
    if col_prox.button("Próxima ▶", disabled=dados["pagina"] >= dados["total_paginas"]):
        st.session_state.pagina_respostas = dados["pagina"] + 1
        st.rerun()


# === Status ===
def formulario_status(inicial, ano, mes):
    inicial = inicial or {}
    with st.form("form_status"):
        st.markdown("### 📝 " + ("Editar status" if inicial.get("id") else "Novo status"))
        cpf = st.text_input("CPF", value=formatar_cpf(inicial.get("cpf", "")))
        nome_usuario = st.text_input("Nome do usuário", value=inicial.get("nome_usuario", ""))
        problematica = st.selectbox(
            "Problemática",
            PROBLEMATICAS,
            index=PROBLEMATICAS.index(inicial["problematica"]) if inicial.get("problematica") in PROBLEMATICAS else 0,
        )
        outro = st.text_input("Descreva (se Outro)", value=inicial.get("problematica_outro") or "")
        prioridade = st.selectbox(
            "Prioridade",
            PRIORIDADES,
            index=PRIORIDADES.index(inicial["prioridade"]) if inicial.get("prioridade") in PRIORIDADES else 2,
        )
        confirmado = True
        if not inicial.get("id") and me.get("role_status") == "operador":
            confirmado = st.checkbox(
                "Seu Status será criado e repassado para o supervisor. "
                "Confirmo que todas as informações estão corretas."
            )
        col1, col2 = st.columns(2)
        salvar = col1.form_submit_button("Salvar", use_container_width=True)
        cancelar = col2.form_submit_button("Cancelar", use_container_width=True)

    if cancelar:
        st.session_state.editando_status = None
        st.rerun()
    if salvar:
        if not confirmado:
            st.warning("Confirme as informações antes de salvar.")
            return
        resultado = api.salvar_status(token, {
            "id": inicial.get("id"),
            "cpf": so_digitos(cpf),
            "nome_usuario": nome_usuario,
            "problematica": problematica,
            "problematica_outro": outro,
            "prioridade": prioridade,
            "ano": inicial.get("ano") or ano,
            "mes": inicial.get("mes") or mes,
        })
        if resultado.get("ok"):
            st.session_state.editando_status = None
            st.success("Status salvo!")
            st.rerun()
        else:
            st.error(mensagem(resultado, "Erro ao salvar."))


def detalhes_status(linha, situacoes, pendentes):
    sid = linha["id"]
    titulo = f"{formatar_cpf(linha['cpf'])} | {linha['nome_usuario']} | {linha.get('situacao_nome') or 'Sem situação'}"
    if sid in pendentes:
        titulo = "🔔 " + titulo
    with st.expander(titulo):
        st.markdown(
            f"**Problemática:** {linha['problematica']} {linha.get('problematica_outro') or ''}  \n"
            f"**Prioridade:** {linha['prioridade']}  \n"
            f"**Operador:** {linha.get('operador_nome') or '-'}  \n"
            f"**Atualizado em:** {formatar_data(linha.get('atualizado_em'))}"
        )

        if esta_concluido(linha):
            if eh_revisor and st.button("🔄 Reabrir", key=f"reabrir_{sid}"):
                resultado = api.reabrir_status(token, sid)
                if resultado.get("ok"):
                    st.rerun()
                st.error(mensagem(resultado))
        else:
            nomes = {s["id"]: s["nome"] for s in situacoes}
            col1, col2 = st.columns(2)
            situacao_id = col1.selectbox("Situação", list(nomes.keys()), format_func=lambda i: nomes[i],
                                         key=f"sit_{sid}")
            notificacao = ""
            alvo = next((s for s in situacoes if s["id"] == situacao_id), None)
            if eh_revisor and not situacao_finaliza(alvo):
                notificacao = col2.selectbox("Notificação ao Operador", ["", *OPCOES_NOTIFICACAO], key=f"not_{sid}")
            if st.button("Atualizar situação", key=f"btn_sit_{sid}"):
                resultado = api.alterar_situacao(token, sid, situacao_id, notificacao)
                if resultado.get("ok"):
                    st.rerun()
                st.error(mensagem(resultado))

        col_edit, col_del = st.columns(2)
        if eh_revisor and col_edit.button("✏️ Editar", key=f"edit_st_{sid}"):
            payload = api.carregar_edicao_status(token, sid)
            if payload.get("ok"):
                st.session_state.editando_status = payload["status"]
                st.rerun()
            st.error(mensagem(payload))
        if me.get("pode_excluir") and col_del.button("🗑️ Excluir", key=f"del_st_{sid}"):
            resultado = api.excluir_status(token, sid)
            if resultado.get("ok"):
                st.rerun()
            st.error(mensagem(resultado))

        aba_hist, aba_com, aba_tl = st.tabs(["Histórico do CPF", "Comentários", "Timeline"])
        with aba_hist:
            historico = api.carregar_historico(token, linha["cpf"]).get("historico", [])
            if historico:
                st.dataframe(pd.DataFrame(historico), use_container_width=True, hide_index=True)
            else:
                st.info("Sem histórico.")
        with aba_com:
            for c in api.carregar_comentarios(token, sid).get("comentarios", []):
                st.markdown(f"- {formatar_data(c['created_at'])}: {c['comentario']}")
            texto = st.text_input("Novo comentário", key=f"com_{sid}")
            if st.button("Comentar", key=f"btn_com_{sid}") and texto.strip():
                resultado = api.comentar_status(token, sid, texto)
                if resultado.get("ok"):
                    st.rerun()
                st.error(mensagem(resultado))
        with aba_tl:
            for t in api.carregar_timeline(token, sid).get("timeline", []):
                st.markdown(
                    f"- {formatar_data(t.get('feito_em'))} | {t.get('feito_por_nome') or t.get('feito_por')}: "
                    f"{t.get('acao')} {t.get('campo') or ''} {t.get('valor_antigo') or ''} → {t.get('valor_novo') or ''}"
                )

        if eh_revisor:
            aviso = st.text_input(f"Mensagem ao operador ({PREFIXO_ATUALIZACAO})", key=f"aviso_{sid}")
            if st.button("Enviar ao operador", key=f"btn_aviso_{sid}") and aviso.strip():
                resultado = api.notificar_operador(token, sid, aviso)
                if resultado.get("ok"):
                    st.rerun()
                st.error(mensagem(resultado))
        elif me.get("role_status") == "operador":
            col_ciente, col_enviada = st.columns(2)
            for coluna, acao, rotulo in ((col_ciente, "ciente", "👍 Ciente"), (col_enviada, "resposta_enviada", "📨 Resposta enviada")):
                if coluna.button(rotulo, key=f"{acao}_{sid}"):
                    resultado = api.acao_operador(token, sid, acao)
                    if resultado.get("ok"):
                        st.rerun()
                    st.error(mensagem(resultado))


def tela_status():
    st.subheader("📋 Status por CPF")
    hoje = datetime.now()
    col_ano, col_mes, col_atualizar = st.columns([1, 1, 1])
    ano = col_ano.number_input("Ano", min_value=2020, max_value=2100, value=hoje.year)
    mes = col_mes.selectbox("Mês", list(range(1, 13)), index=hoje.month - 1, format_func=lambda m: MESES[m - 1])
    if col_atualizar.button("🔄 Atualizar", use_container_width=True):
        st.rerun()

    if st.session_state.editando_status is not None:
        formulario_status(st.session_state.editando_status, ano, mes)
        return

    pendencias = api.carregar_pendencias(token, ano, mes)
    if pendencias.get("total"):
        st.warning(f"🔔 {pendencias['total']} status com notificação pendente.")

    resumo = api.carregar_resumo_status(token, ano, mes)
    if resumo.get("ok"):
        r = resumo["resumo"]
        cols = st.columns(6)
        cols[0].metric("Total", r["total"])
        cols[1].metric("Abertas", r["abertas"])
        cols[2].metric("Concluídas", r["concluidas"])
        cols[3].metric("Alta", r["alta"])
        cols[4].metric("Em análise", r["em_analise"])
        cols[5].metric("Aguardando", r["aguardando_informacoes"])

    if st.button("➕ Novo status"):
        st.session_state.editando_status = {}
        st.rerun()

    situacoes = api.listar_situacoes(token).get("situacoes", [])
    pendentes = set(pendencias.get("status_ids", []))

    aba_ativos, aba_concluidos = st.tabs(["Ativos", "Concluídos"])
    for aba, chave in ((aba_ativos, "ativos"), (aba_concluidos, "concluidos")):
        with aba:
            dados = api.listar_status(token, ano, mes, chave)
            if not dados.get("ok"):
                st.error(mensagem(dados, "Erro ao carregar"))
                continue
            if not dados["itens"]:
                st.info("Nenhum status encontrado.")
            for linha in dados["itens"]:
                detalhes_status(linha, situacoes, pendentes)


# === Administração ===
def tela_admin():
    st.subheader("⚙️ Administração")
    aba_usuarios, aba_auditoria, aba_metricas = st.tabs(["Usuários", "Auditoria", "Métricas"])

    with aba_usuarios:
        with st.expander("➕ Criar ou convidar usuário"):
            email = st.text_input("E-mail", key="novo_email")
            nome = st.text_input("Nome", key="novo_nome")
            telefone = st.text_input("Telefone", key="novo_tel")
            role = st.selectbox("Nível de acesso", ["leitor", "supervisor", "admin"], key="novo_role")
            senha = st.text_input("Senha (mínimo 6 caracteres)", type="password", key="novo_senha")
            col1, col2 = st.columns(2)
            if col1.button("Criar com senha"):
                resultado = api.criar_usuario(token, email, nome, telefone, role, senha)
                if resultado.get("ok"):
                    st.success("Usuário criado!")
                else:
                    st.error(mensagem(resultado))
            if col2.button("Enviar convite"):
                resultado = api.convidar_usuario(token, email, nome, telefone, role)
                if resultado.get("ok"):
                    st.success("Convite enviado!")
                else:
                    st.error(mensagem(resultado))

        q = st.text_input("Filtrar usuários")
        dados = api.listar_usuarios(token, q)
        if not dados.get("ok"):
            st.error(mensagem(dados, "Erro ao carregar usuários."))
        for u in dados.get("users", []):
            with st.expander(f"{u['nome'] or u['email']} ({u['role']})"):
                st.caption(f"{u['email']} | criado em {formatar_data(u['created_at'])}")
                nome_u = st.text_input("Nome", value=u["nome"], key=f"nome_{u['user_id']}")
                tel_u = st.text_input("Telefone", value=u["telefone"], key=f"tel_{u['user_id']}")
                papeis = ["leitor", "supervisor", "admin"]
                papel_u = st.selectbox("Nível de acesso", papeis,
                                       index=papeis.index(u["role"]) if u["role"] in papeis else 0,
                                       key=f"role_{u['user_id']}")
                col1, col2, col3 = st.columns(3)
                if col1.button("Salvar perfil", key=f"salvar_{u['user_id']}"):
                    resultado = api.atualizar_usuario(token, u["user_id"], nome_u, tel_u)
                    st.success("Perfil atualizado!") if resultado.get("ok") else st.error(mensagem(resultado))
                if col2.button("Alterar nível", key=f"papel_{u['user_id']}"):
                    resultado = api.definir_papel(token, u["user_id"], papel_u)
                    st.success("Nível alterado!") if resultado.get("ok") else st.error(mensagem(resultado))
                if col3.button("🗑️ Excluir", key=f"excluir_{u['user_id']}"):
                    resultado = api.excluir_usuario(token, u["user_id"])
                    if resultado.get("ok"):
                        st.rerun()
                    st.error(mensagem(resultado))

    with aba_auditoria:
        busca = st.text_input("Buscar na auditoria")
        acao = st.selectbox("Ação", [TODOS, "INSERT", "UPDATE", "DELETE"])
        usuario = st.session_state.get("auditoria_usuario", TODOS)
        auditoria = api.carregar_auditoria(
            token,
            usuario=None if usuario == TODOS else usuario,
            acao=None if acao == TODOS else acao,
            busca=busca,
        )
        if not auditoria.get("ok"):
            st.error(mensagem(auditoria))
        usuarios = list(auditoria.get("usuarios") or [TODOS])
        if usuario not in usuarios:
            usuarios.append(usuario)
        st.selectbox("Usuário", usuarios, key="auditoria_usuario")
        for a in auditoria.get("linhas", []):
            with st.expander(f"{formatar_data(a.get('changed_at'))} | {a.get('action')} | {a.get('changed_by_email') or a.get('changed_by')}"):
                if a["alteracoes"]:
                    st.table(pd.DataFrame(a["alteracoes"]))
                else:
                    st.caption("Sem alterações em campos importantes.")

    with aba_metricas:
        dias = st.selectbox("Período (dias)", [7, 15, 30, 90])
        metricas = api.carregar_metricas(token, dias)
        if not metricas.get("ok"):
            st.error(mensagem(metricas))
        else:
            st.markdown("### 🏆 Ranking de uso")
            st.dataframe(pd.DataFrame(metricas["ranking"]), use_container_width=True, hide_index=True)
            with st.expander("Eventos por usuário"):
                st.dataframe(pd.DataFrame(metricas["linhas"]), use_container_width=True, hide_index=True)


# === Renderização de Acordo com o Modo Ativo ===
if modo_ativo == "respostas":
    tela_respostas()
elif modo_ativo == "status":
    tela_status()
elif modo_ativo == "admin":
    tela_admin()
