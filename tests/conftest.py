import itertools
from types import SimpleNamespace
import pytest
from fastapi.testclient import TestClient
from backend import config
from backend.clients import get_anon_client, get_user_client, get_service_client, get_openai_client
from backend.server import app


class ErroFalso(Exception):
    """Imita os erros do postgrest/gotrue, que expõem `.message`."""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ConsultaFalsa:
    def __init__(self, banco, tabela):
        self.banco = banco
        self.tabela = tabela
        self.operacao = "select"
        self.payload = None
        self.conflito = "id"
        self.filtros = []
        self.ordem = None
        self.limite = None

    def select(self, colunas="*"):
        return self

    def eq(self, coluna, valor):
        self.filtros.append(lambda l: l.get(coluna) == valor)
        return self

    def in_(self, coluna, valores):
        self.filtros.append(lambda l: l.get(coluna) in valores)
        return self

    def ilike(self, coluna, padrao):
        prefixo = padrao.rstrip("%").lower()
        self.filtros.append(lambda l: str(l.get(coluna) or "").lower().startswith(prefixo))
        return self

    def or_(self, expressao):
        self.banco.buscas.append(expressao)
        return self

    def order(self, coluna, desc=False):
        self.ordem = (coluna, desc)
        return self

    def limit(self, n):
        self.limite = n
        return self

    def insert(self, payload):
        self.operacao, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.operacao, self.payload = "update", payload
        return self

    def upsert(self, payload, on_conflict="id"):
        self.operacao, self.payload, self.conflito = "upsert", payload, on_conflict
        return self

    def delete(self):
        self.operacao = "delete"
        return self

    def _combina(self, linha):
        return all(f(linha) for f in self.filtros)

    def execute(self):
        falha = self.banco.falhas.get((self.tabela, self.operacao))
        if falha:
            raise ErroFalso(falha)
        self.banco.operacoes.append((self.tabela, self.operacao, self.payload))

        linhas = self.banco.tabelas.setdefault(self.tabela, [])
        if self.operacao == "insert":
            novas = self.payload if isinstance(self.payload, list) else [self.payload]
            criadas = []
            for nova in novas:
                nova = dict(nova)
                nova.setdefault("id", self.banco.proximo_id())
                linhas.append(nova)
                criadas.append(nova)
            return SimpleNamespace(data=criadas)

        if self.operacao == "upsert":
            novas = self.payload if isinstance(self.payload, list) else [self.payload]
            for nova in novas:
                existente = next((l for l in linhas if nova.get(self.conflito) is not None
                                  and l.get(self.conflito) == nova.get(self.conflito)), None)
                if existente is not None:
                    existente.update(nova)
                else:
                    nova = dict(nova)
                    nova.setdefault("id", self.banco.proximo_id())
                    linhas.append(nova)
            return SimpleNamespace(data=novas)

        if self.operacao == "update":
            alteradas = [l for l in linhas if self._combina(l)]
            for l in alteradas:
                l.update(self.payload)
            return SimpleNamespace(data=alteradas)

        if self.operacao == "delete":
            removidas = [l for l in linhas if self._combina(l)]
            self.banco.tabelas[self.tabela] = [l for l in linhas if not self._combina(l)]
            return SimpleNamespace(data=removidas)

        resultado = [dict(l) for l in linhas if self._combina(l)]
        if self.ordem:
            coluna, desc = self.ordem
            resultado.sort(key=lambda l: str(l.get(coluna) or ""), reverse=desc)
        if self.limite is not None:
            resultado = resultado[:self.limite]
        return SimpleNamespace(data=resultado)


class RpcFalsa:
    def __init__(self, banco, nome, params):
        self.banco = banco
        self.nome = nome
        self.params = params

    def execute(self):
        self.banco.chamadas_rpc.append((self.nome, self.params))
        resposta = self.banco.rpcs.get(self.nome)
        if callable(resposta):
            resposta = resposta(self.params)
        if isinstance(resposta, Exception):
            raise resposta
        return SimpleNamespace(data=resposta)


class AdminAuthFalso:
    def __init__(self, banco):
        self.banco = banco

    def _talvez_falhar(self, metodo):
        if metodo in self.banco.falhas_auth:
            raise ErroFalso(self.banco.falhas_auth[metodo])

    def create_user(self, atributos):
        self._talvez_falhar("create_user")
        self.banco.chamadas_auth.append(("create_user", atributos))
        novo = self.banco.adicionar_usuario(f"novo-{self.banco.proximo_id()}", atributos["email"])
        return SimpleNamespace(user=novo)

    def invite_user_by_email(self, email, opcoes=None):
        self._talvez_falhar("invite_user_by_email")
        self.banco.chamadas_auth.append(("invite_user_by_email", email))
        novo = self.banco.adicionar_usuario(f"convite-{self.banco.proximo_id()}", email)
        return SimpleNamespace(user=novo)

    def delete_user(self, user_id):
        self._talvez_falhar("delete_user")
        self.banco.chamadas_auth.append(("delete_user", user_id))
        self.banco.usuarios = [u for u in self.banco.usuarios if u.id != user_id]

    def update_user_by_id(self, user_id, atributos):
        self._talvez_falhar("update_user_by_id")
        self.banco.chamadas_auth.append(("update_user_by_id", user_id, atributos))

    def list_users(self, page=1, per_page=50):
        self._talvez_falhar("list_users")
        inicio = (page - 1) * per_page
        return self.banco.usuarios[inicio:inicio + per_page]


class AuthFalso:
    def __init__(self, banco):
        self.banco = banco
        self.admin = AdminAuthFalso(banco)

    def get_user(self, token):
        usuario = self.banco.tokens.get(token)
        if not usuario:
            raise ErroFalso("invalid JWT")
        return SimpleNamespace(user=usuario)

    def sign_in_with_password(self, credenciais):
        usuario = next((u for u in self.banco.usuarios if u.email == credenciais["email"]), None)
        if not usuario or self.banco.senhas.get(usuario.email) != credenciais["password"]:
            raise ErroFalso("Invalid login credentials")
        sessao = SimpleNamespace(access_token=f"tok-{usuario.id}", refresh_token="refresh")
        return SimpleNamespace(session=sessao, user=usuario)

    def reset_password_for_email(self, email, opcoes=None):
        self.banco.chamadas_auth.append(("reset_password_for_email", email, opcoes))

    def verify_otp(self, params):
        if params.get("token_hash") != "hash-valido":
            raise ErroFalso("Token has expired or is invalid")
        return SimpleNamespace(session=SimpleNamespace(access_token="tok-recovery"), user=None)

    def update_user(self, atributos):
        self.banco.chamadas_auth.append(("update_user", atributos))

    def sign_out(self):
        self.banco.chamadas_auth.append(("sign_out",))


class SupabaseFalso:
    """Cliente Supabase em memória com o subconjunto da API usado pelo backend."""

    def __init__(self):
        self.tabelas = {}
        self.rpcs = {}
        self.falhas = {}
        self.falhas_auth = {}
        self.operacoes = []
        self.chamadas_rpc = []
        self.chamadas_auth = []
        self.buscas = []
        self.usuarios = []
        self.tokens = {}
        self.senhas = {}
        self._ids = itertools.count(1)
        self.auth = AuthFalso(self)

    def proximo_id(self):
        return str(next(self._ids))

    def table(self, nome):
        return ConsultaFalsa(self, nome)

    def rpc(self, nome, params=None):
        return RpcFalsa(self, nome, params or {})

    def adicionar_usuario(self, user_id, email, papel=None, token=None, criado_em="2024-01-01T00:00:00+00:00", meta=None):
        usuario = SimpleNamespace(id=user_id, email=email, user_metadata=meta or {}, created_at=criado_em)
        self.usuarios.append(usuario)
        if token:
            self.tokens[token] = usuario
        if papel:
            self.tabelas.setdefault("user_roles", []).append({"user_id": user_id, "role": papel})
        return usuario

    def rpcs_chamadas(self, nome):
        return [params for n, params in self.chamadas_rpc if n == nome]


@pytest.fixture
def banco():
    return SupabaseFalso()


@pytest.fixture
def client(banco, monkeypatch):
    monkeypatch.setattr(config, "SUPABASE_URL", "http://supabase.local")
    monkeypatch.setattr(config, "SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setattr(config, "SUPABASE_SERVICE_ROLE_KEY", "service-key")
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")

    app.dependency_overrides[get_anon_client] = lambda: banco
    app.dependency_overrides[get_user_client] = lambda: banco
    app.dependency_overrides[get_service_client] = lambda: banco
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin(banco):
    banco.adicionar_usuario("u-admin", "admin@detran.gov.br", papel="admin", token="tok-admin")
    return bearer("tok-admin")


@pytest.fixture
def supervisor(banco):
    banco.adicionar_usuario("u-sup", "sup@detran.gov.br", papel="supervisor", token="tok-sup")
    return bearer("tok-sup")


@pytest.fixture
def operador(banco):
    banco.adicionar_usuario("u-op", "op@detran.gov.br", papel="operador", token="tok-op")
    return bearer("tok-op")


@pytest.fixture
def leitor(banco):
    banco.adicionar_usuario("u-leitor", "leitor@detran.gov.br", papel="leitor", token="tok-leitor")
    return bearer("tok-leitor")
