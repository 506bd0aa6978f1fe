import requests
from frontend import api_client


class RespostaFalsa:
    def __init__(self, corpo=None, texto=""):
        self.corpo = corpo
        self.text = texto

    def json(self):
        if self.corpo is None:
            raise ValueError("sem json")
        return self.corpo


def test_envia_bearer_e_timeout(monkeypatch):
    chamadas = []

    def falso(metodo, url, **kwargs):
        chamadas.append((metodo, url, kwargs))
        return RespostaFalsa({"ok": True})

    monkeypatch.setattr(api_client.requests, "request", falso)

    assert api_client.definir_papel("tok", "u2", "admin") == {"ok": True}
    metodo, url, kwargs = chamadas[0]
    assert metodo == "POST"
    assert url == f"{api_client.API_URL}/admin/set-role"
    assert kwargs["headers"] == {"Authorization": "Bearer tok"}
    assert kwargs["timeout"] == api_client.TIMEOUT
    assert kwargs["json"] == {"user_id": "u2", "role": "admin"}


def test_falha_de_conexao_vira_erro(monkeypatch):
    def falso(*args, **kwargs):
        raise requests.exceptions.ConnectionError("recusada")

    monkeypatch.setattr(api_client.requests, "request", falso)

    resultado = api_client.login("a@b.com", "123456")
    assert resultado["ok"] is False
    assert resultado["error"] == "connection_error"


def test_resposta_sem_json(monkeypatch):
    monkeypatch.setattr(api_client.requests, "request", lambda *a, **k: RespostaFalsa(texto="Bad Gateway"))
    assert api_client.carregar_me("tok") == {"ok": False, "error": "invalid_response", "details": "Bad Gateway"}


def test_mensagem():
    assert api_client.mensagem({"error": "invalid_role"}) == "invalid_role"
    assert api_client.mensagem({"error": "invalid_password", "details": "mínimo 6"}) == "invalid_password: mínimo 6"
    assert api_client.mensagem(None, "padrão") == "padrão"


def test_auditoria_envia_somente_filtros_preenchidos(monkeypatch):
    chamadas = []

    def falso(metodo, url, **kwargs):
        chamadas.append(kwargs)
        return RespostaFalsa({"ok": True})

    monkeypatch.setattr(api_client.requests, "request", falso)

    api_client.carregar_auditoria("tok", usuario="u2", acao=None, busca="")
    assert chamadas[0]["params"] == {"usuario": "u2"}
