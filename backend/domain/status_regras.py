import re
from typing import Optional

PROBLEMATICAS = (
    "Documento vencido",
    "Processo parado",
    "Erro cadastral",
    "Aguardando biometria",
    "Pagamento não identificado",
    "Outro",
)
PRIORIDADES = ("Alta", "Média", "Baixa")

PREFIXO_ATUALIZACAO = "[ATUALIZAÇÃO AO OPERADOR]"
PREFIXO_CONFIRMACAO = "[CONFIRMAÇÃO OPERADOR]"
PREFIXO_CIENTE = "[CIENTE OPERADOR]"
PREFIXO_ENVIADA = "[RESPOSTA ENVIADA OPERADOR]"
PREFIXOS_CONFIRMACAO = (PREFIXO_CONFIRMACAO, PREFIXO_CIENTE, PREFIXO_ENVIADA)

OPCOES_NOTIFICACAO = (
    "Verificar situação com Coordenação de Habilitação",
    "Verificar situação com Coordenação de Veículos",
    "Verificar situação com Unidade de Administração",
)

PALAVRAS_FINAIS = ("concluido", "concluida", "resolvido", "resolvida", "finalizado", "finalizada")


# === CPF ===

def so_digitos(valor) -> str:
    return re.sub(r"\D", "", str(valor or ""))


def formatar_cpf(valor) -> str:
    """Máscara progressiva ###.###.###-##, usada também durante a digitação."""
    d = so_digitos(valor)[:11]
    if len(d) <= 3:
        return d
    if len(d) <= 6:
        return f"{d[:3]}.{d[3:]}"
    if len(d) <= 9:
        return f"{d[:3]}.{d[3:6]}.{d[6:]}"
    return f"{d[:3]}.{d[3:6]}.{d[6:9]}-{d[9:]}"


# === Situações ===

def esta_concluido(linha: dict) -> bool:
    if linha.get("concluida"):
        return True
    slug = str(linha.get("situacao_slug") or "").lower()
    nome = str(linha.get("situacao_nome") or "").lower()
    return any(p in slug or p in nome for p in PALAVRAS_FINAIS)


def situacao_finaliza(situacao: Optional[dict]) -> bool:
    if not situacao:
        return False
    if situacao.get("finaliza"):
        return True
    slug = str(situacao.get("slug") or "")
    return any(p in slug for p in PALAVRAS_FINAIS)
