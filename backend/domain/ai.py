from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from backend import config
from backend.clients import get_openai_client
from backend.domain.models import PerguntaIA
import logging
import openai

router = APIRouter()
logger = logging.getLogger(__name__)

PROMPT_SISTEMA = (
    "Você é um atendente do Detran. Seja direto, correto e não invente informação. "
    "Se faltar dado, faça 1 pergunta objetiva."
)


def _mensagem_upstream(e: openai.APIStatusError) -> str:
    corpo = e.body if isinstance(e.body, dict) else {}
    return str(corpo.get("message") or "Falha ao gerar resposta")


@router.post("/answer")
def gerar_resposta(payload: PerguntaIA, client=Depends(get_openai_client)):
    """
    Encaminha o prompt para a API de chat da OpenAI e devolve o texto gerado.
    """
    prompt = (payload.prompt or "").strip()
    if not prompt:
        return JSONResponse({"error": "prompt vazio"}, status_code=400)

    if client is None:
        return JSONResponse({"error": "OPENAI_API_KEY não configurada"}, status_code=500)

    try:
        response = client.chat.completions.create(
            model=config.OPENAI_MODEL,
            temperature=0.2,
            messages=[
                {"role": "system", "content": PROMPT_SISTEMA},
                {"role": "user", "content": prompt},
            ],
        )
    except openai.APIStatusError as e:
        logger.error(f"❌ OpenAI respondeu {e.status_code}: {str(e)}")
        return JSONResponse({"error": _mensagem_upstream(e)}, status_code=e.status_code)
    except Exception as e:
        logger.error(f"❌ Erro ao gerar resposta com OpenAI: {str(e)}")
        return JSONResponse({"error": str(e) or "Falha"}, status_code=500)

    choices = response.choices or []
    answer = (choices[0].message.content if choices and choices[0].message else None) or ""
    return {"answer": answer}
