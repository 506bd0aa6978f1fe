import os
from typing import Optional
from dotenv import load_dotenv

# 🧪 Carrega variáveis de ambiente
load_dotenv()


def _primeira_env(*nomes: str, padrao: str = "") -> str:
    for nome in nomes:
        valor = os.getenv(nome, "").strip()
        if valor:
            return valor
    return padrao


# 🔐 Supabase
SUPABASE_URL = _primeira_env("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL")
SUPABASE_ANON_KEY = _primeira_env("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY", "SUPABASE_KEY")
SUPABASE_SERVICE_ROLE_KEY = _primeira_env("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_ROLE")

# 🤖 OpenAI
OPENAI_API_KEY = _primeira_env("OPENAI_API_KEY")
OPENAI_MODEL = _primeira_env("OPENAI_MODEL", padrao="gpt-4o-mini")

# 🔁 Link enviado no e-mail de redefinição de senha
RESET_REDIRECT_URL = _primeira_env("RESET_REDIRECT_URL", padrao="http://localhost:8501/?modo=reset")


def faltando_configuracao(exigir_service_role: bool = False) -> Optional[str]:
    """Retorna o código da primeira configuração ausente, ou None."""
    if not SUPABASE_URL:
        return "missing_supabase_url"
    if not SUPABASE_ANON_KEY:
        return "missing_anon_key"
    if exigir_service_role and not SUPABASE_SERVICE_ROLE_KEY:
        return "missing_service_role_key"
    return None
