from pydantic import BaseModel
from typing import List, Optional, Union

# Campos de texto aceitam qualquer valor e são tratados nas rotas,
# para que campos ausentes caiam nos códigos de erro da API (ex.: missing_email).


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class EsqueciSenhaRequest(BaseModel):
    email: str = ""


class RedefinirSenhaRequest(BaseModel):
    token_hash: str = ""
    password: str = ""
    password2: str = ""


# === Administração de usuários ===

class CriarUsuarioRequest(BaseModel):
    email: Optional[str] = ""
    nome: Optional[str] = ""
    telefone: Optional[str] = ""
    role: Optional[str] = "leitor"
    password: Optional[str] = ""


class ConvidarUsuarioRequest(BaseModel):
    email: Optional[str] = ""
    nome: Optional[str] = ""
    telefone: Optional[str] = ""
    role: Optional[str] = "leitor"


class UsuarioIdRequest(BaseModel):
    user_id: Optional[str] = ""


class DefinirPapelRequest(BaseModel):
    user_id: Optional[str] = ""
    role: Optional[str] = ""


class AtualizarUsuarioRequest(BaseModel):
    user_id: Optional[str] = ""
    nome: Optional[str] = ""
    telefone: Optional[str] = ""


class UsuarioView(BaseModel):
    user_id: str
    email: str
    nome: str
    telefone: str
    role: str
    created_at: str


# === IA ===

class PerguntaIA(BaseModel):
    prompt: Optional[str] = ""


# === Respostas (biblioteca) ===

class Resposta(BaseModel):
    id: str
    tema: str = ""
    subtema: str = ""
    assunto: str = ""
    produto: str = ""
    canal: str = ""
    status: str = ""
    tags: List[str] = []
    resposta: str = ""
    favorito: bool = False
    atualizado_em: str = ""


class RespostaEntrada(BaseModel):
    tema: str = ""
    subtema: str = ""
    assunto: str = ""
    produto: str = ""
    canal: str = "Chat"
    status: str = "Ativa"
    tags: Union[List[str], str] = []
    resposta: str = ""
    favorito: bool = False


class FavoritoRequest(BaseModel):
    valor: bool


class EventoRequest(BaseModel):
    evento: str


# === Status (casos por CPF) ===

class StatusEntrada(BaseModel):
    id: Optional[str] = None
    cpf: str = ""
    nome_usuario: str = ""
    problematica: str = ""
    problematica_outro: Optional[str] = ""
    prioridade: str = "Média"
    ano: int
    mes: int


class SituacaoRequest(BaseModel):
    situacao_id: str
    notificacao: Optional[str] = ""


class ComentarioRequest(BaseModel):
    comentario: str = ""


class NotificacaoOperadorRequest(BaseModel):
    texto: str = ""


class AcaoOperadorRequest(BaseModel):
    acao: str
