import os
import requests

API_URL = os.getenv("API_URL", "http://127.0.0.1:8000/api")  # Base URL do backend
TIMEOUT = 15


def _headers(token=None):
    return {"Authorization": f"Bearer {token}"} if token else {}


def _chamar(metodo, caminho, token=None, timeout=TIMEOUT, **kwargs):
    """
    Faz a chamada ao backend e devolve o JSON da resposta.
    Falhas de conexão viram {"ok": False, "error": ...} para a tela exibir.
    """
    try:
        response = requests.request(
            metodo,
            f"{API_URL}{caminho}",
            headers=_headers(token),
            timeout=timeout,
            **kwargs,
        )
    except requests.exceptions.RequestException as e:
        return {"ok": False, "error": "connection_error", "details": f"Erro ao conectar com a API: {e}"}

    try:
        return response.json()
    except ValueError:
        return {"ok": False, "error": "invalid_response", "details": response.text[:300]}


def mensagem(resultado, padrao="Erro inesperado."):
    """Texto amigável para exibir a partir do corpo de erro da API."""
    if not isinstance(resultado, dict):
        return padrao
    detalhes = resultado.get("details")
    erro = resultado.get("error")
    if detalhes and erro:
        return f"{erro}: {detalhes}"
    return str(detalhes or erro or padrao)


# === Autenticação ===

def login(email, senha):
    return _chamar("POST", "/auth/login", json={"email": email, "password": senha})


def esqueci_senha(email):
    return _chamar("POST", "/auth/forgot-password", json={"email": email})


def redefinir_senha(token_hash, senha, senha2):
    return _chamar("POST", "/auth/reset-password", json={"token_hash": token_hash, "password": senha, "password2": senha2})


def carregar_me(token):
    return _chamar("GET", "/auth/me", token)


# === Administração ===

def listar_usuarios(token, q=None):
    return _chamar("GET", "/admin/users", token, params={"q": q} if q else None)


def criar_usuario(token, email, nome, telefone, role, senha):
    payload = {"email": email, "nome": nome, "telefone": telefone, "role": role, "password": senha}
    return _chamar("POST", "/admin/create-user", token, json=payload)


def convidar_usuario(token, email, nome, telefone, role):
    payload = {"email": email, "nome": nome, "telefone": telefone, "role": role}
    return _chamar("POST", "/admin/invite-user", token, json=payload)


def excluir_usuario(token, user_id):
    return _chamar("POST", "/admin/delete-user", token, json={"user_id": user_id})


def definir_papel(token, user_id, role):
    return _chamar("POST", "/admin/set-role", token, json={"user_id": user_id, "role": role})


def atualizar_usuario(token, user_id, nome, telefone):
    return _chamar("POST", "/admin/update-user", token, json={"user_id": user_id, "nome": nome, "telefone": telefone})


# === IA ===

def gerar_resposta_ia(prompt):
    return _chamar("POST", "/ai/answer", timeout=60, json={"prompt": prompt})


# === Respostas ===

def listar_respostas(token, **filtros):
    params = {k: v for k, v in filtros.items() if v not in (None, "")}
    return _chamar("GET", "/respostas", token, params=params)


def salvar_resposta(token, dados, resposta_id=None):
    if resposta_id:
        return _chamar("PUT", f"/respostas/{resposta_id}", token, json=dados)
    return _chamar("POST", "/respostas", token, json=dados)


def excluir_resposta(token, resposta_id):
    return _chamar("DELETE", f"/respostas/{resposta_id}", token)


def favoritar_resposta(token, resposta_id, valor):
    return _chamar("POST", f"/respostas/{resposta_id}/favorito", token, json={"valor": valor})


def carregar_prompt_resposta(token, resposta_id):
    return _chamar("GET", f"/respostas/{resposta_id}/prompt", token)


def registrar_evento(token, resposta_id, evento):
    return _chamar("POST", f"/respostas/{resposta_id}/eventos", token, json={"evento": evento})


def importar_csv(token, nome_arquivo, conteudo):
    arquivos = {"arquivo": (nome_arquivo, conteudo, "text/csv")}
    return _chamar("POST", "/respostas/importar", token, timeout=120, files=arquivos)


def exportar_csv(token):
    """Retorna os bytes do CSV, ou None se o backend recusar."""
    try:
        response = requests.get(f"{API_URL}/respostas/exportar", headers=_headers(token), timeout=60)
    except requests.exceptions.RequestException:
        return None
    if response.status_code != 200:
        return None
    return response.content


def carregar_auditoria(token, usuario=None, acao=None, busca=""):
    params = {"usuario": usuario, "acao": acao, "busca": busca}
    return _chamar("GET", "/respostas/auditoria", token, params={k: v for k, v in params.items() if v})


def carregar_metricas(token, dias=7):
    return _chamar("GET", "/metricas", token, params={"dias": dias})


# === Status ===

def listar_situacoes(token):
    return _chamar("GET", "/status/situacoes", token)


def listar_status(token, ano, mes, aba="ativos"):
    return _chamar("GET", "/status", token, params={"ano": ano, "mes": mes, "aba": aba})


def carregar_resumo_status(token, ano, mes):
    return _chamar("GET", "/status/resumo", token, params={"ano": ano, "mes": mes})


def carregar_pendencias(token, ano, mes):
    return _chamar("GET", "/status/pendencias", token, params={"ano": ano, "mes": mes})


def salvar_status(token, dados):
    return _chamar("POST", "/status", token, json=dados)


def carregar_edicao_status(token, status_id):
    return _chamar("GET", f"/status/{status_id}/edicao", token)


def alterar_situacao(token, status_id, situacao_id, notificacao=""):
    payload = {"situacao_id": situacao_id, "notificacao": notificacao}
    return _chamar("POST", f"/status/{status_id}/situacao", token, json=payload)


def reabrir_status(token, status_id):
    return _chamar("POST", f"/status/{status_id}/reabrir", token)


def excluir_status(token, status_id):
    return _chamar("DELETE", f"/status/{status_id}", token)


def carregar_historico(token, cpf):
    return _chamar("GET", f"/status/historico/{cpf}", token)


def carregar_comentarios(token, status_id):
    return _chamar("GET", f"/status/{status_id}/comentarios", token)


def carregar_timeline(token, status_id):
    return _chamar("GET", f"/status/{status_id}/timeline", token)


def comentar_status(token, status_id, comentario):
    return _chamar("POST", f"/status/{status_id}/comentarios", token, json={"comentario": comentario})


def notificar_operador(token, status_id, texto):
    return _chamar("POST", f"/status/{status_id}/notificar-operador", token, json={"texto": texto})


def acao_operador(token, status_id, acao):
    return _chamar("POST", f"/status/{status_id}/acao-operador", token, json={"acao": acao})
