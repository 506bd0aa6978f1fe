import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from backend.clients import connect_clients, close_clients
from backend.domain.erros import ErroApi
from backend.routers import api

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gerencia o ciclo de vida da aplicação."""
    try:
        logger.info("🔄 Inicializando conexões com serviços externos...")
        await connect_clients()
        logger.info("✅ Todas as conexões inicializadas com sucesso.")
        yield
    except Exception as e:
        logger.error(f"❌ Erro fatal na inicialização: {str(e)}")
        raise
    finally:
        logger.info("🔒 Encerrando conexões...")
        await close_clients()
        logger.info("✅ Conexões encerradas com sucesso.")

# Inicializar FastAPI com configurações explícitas
app = FastAPI(
    title="Base de Respostas e Status API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    openapi_url="/api/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ErroApi)
async def tratar_erro_api(request: Request, exc: ErroApi):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.erro} {exc.detalhes or ''}")
    return JSONResponse(exc.corpo(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def tratar_corpo_invalido(request: Request, exc: RequestValidationError):
    detalhes = "; ".join(
        f"{'.'.join(str(p) for p in erro.get('loc', []))}: {erro.get('msg', '')}" for erro in exc.errors()
    )
    return JSONResponse({"ok": False, "error": "invalid_request", "details": detalhes}, status_code=400)

# Registrar todas as rotas através do router central
app.include_router(api.router, prefix="/api")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("backend.server:app", host="127.0.0.1", port=8000, reload=True)
