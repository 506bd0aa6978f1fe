from typing import Optional


class ErroApi(Exception):
    """Erro de negócio com status HTTP e código fixo (ex.: `not_admin`)."""

    def __init__(self, status_code: int, erro: str, detalhes: Optional[str] = None):
        super().__init__(erro)
        self.status_code = status_code
        self.erro = erro
        self.detalhes = detalhes

    def corpo(self) -> dict:
        corpo = {"ok": False, "error": self.erro}
        if self.detalhes is not None:
            corpo["details"] = self.detalhes
        return corpo


def mensagem_erro(e: Exception) -> str:
    """Extrai a mensagem de um erro do Supabase (postgrest/auth) ou genérico."""
    mensagem = getattr(e, "message", None)
    if mensagem:
        return str(mensagem)
    return str(e)
