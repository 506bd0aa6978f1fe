import pytest
from backend.domain.erros import ErroApi
from backend.domain.models import Resposta
from backend.domain.respostas import (
    TODOS,
    parse_tags,
    escapar_like,
    paginar,
    facetas,
    estatisticas,
    montar_prompt_ia,
    diff_importante,
    preparar_linhas_csv,
    filtrar_respostas,
)
from conftest import ErroFalso


def _resposta(**kwargs):
    dados = {"id": "1", "tema": "CNH", "assunto": "Renovação", "resposta": "Texto", "status": "Ativa"}
    dados.update(kwargs)
    return Resposta(**dados)


def _linhas(n):
    return [
        {"id": str(i), "tema": "CNH" if i % 2 else "Veículos", "subtema": "", "assunto": f"Assunto {i}",
         "produto": "", "canal": "Chat", "status": "Ativa", "tags": "a|b", "resposta": "Texto",
         "favorito": i == 1, "updated_at": f"2024-01-{i:02d}T00:00:00+00:00"}
        for i in range(1, n + 1)
    ]


def test_parse_tags():
    assert parse_tags(" renovação | cnh ||") == ["renovação", "cnh"]
    assert parse_tags(["a", " ", "b "]) == ["a", "b"]
    assert parse_tags(None) == []


def test_escapar_like():
    assert escapar_like("50%_off") == "50\\%\\_off"


def test_paginar_limita_pagina():
    itens = list(range(25))
    pagina, atual, total = paginar(itens, 5)
    assert (atual, total) == (3, 3)
    assert pagina == [24]

    pagina, atual, total = paginar([], 1)
    assert (pagina, atual, total) == ([], 1, 1)


def test_facetas_e_estatisticas():
    respostas = [
        _resposta(id="1", tema="CNH", favorito=True),
        _resposta(id="2", tema="Veículos", status="Em revisão"),
        _resposta(id="3", tema="CNH", status="Arquivada"),
    ]
    assert facetas(respostas)["tema"] == [TODOS, "CNH", "Veículos"]
    assert facetas(respostas)["subtema"] == [TODOS]
    assert estatisticas(respostas) == {"total": 3, "ativas": 1, "em_revisao": 1, "arquivadas": 1, "favoritas": 1}


def test_filtrar_respostas_inclui_tags():
    respostas = [_resposta(id="1", tags=["biometria"]), _resposta(id="2")]
    assert [r.id for r in filtrar_respostas(respostas, "BIOMETRIA")] == ["1"]


def test_montar_prompt_ia():
    prompt = montar_prompt_ia(_resposta(subtema="Prazo", tags=["cnh", "prazo"], resposta="Leve o RG."))
    assert prompt.startswith("Você é um atendente do Detran.")
    assert "Tags: cnh, prazo" in prompt
    assert "BASE OFICIAL:\nLeve o RG." in prompt
    assert prompt.endswith("faça 1 pergunta objetiva.")


def test_diff_importante():
    antigo = {"tema": "CNH", "tags": "a|b", "resposta": "x", "updated_at": "ontem"}
    novo = {"tema": "CNH", "tags": "a | b", "resposta": "y", "updated_at": "hoje"}
    assert diff_importante(antigo, novo) == [{"field": "resposta", "before": "x", "after": "y"}]
    assert diff_importante(None, {"tema": "CNH"}) == [{"field": "tema", "before": "", "after": "CNH"}]


def test_preparar_linhas_csv_aceita_cabecalho_capitalizado():
    csv_texto = "Tema,Assunto,Resposta,Tags,id\nCNH,Renovação,Leve o RG,a| b,\nCNH,2ª via,Pague a taxa,,42\n"

    linhas = preparar_linhas_csv(csv_texto)

    assert "id" not in linhas[0]
    assert linhas[0]["canal"] == "Chat"
    assert linhas[0]["status"] == "Ativa"
    assert linhas[0]["tags"] == "a|b"
    assert linhas[1]["id"] == "42"


def test_preparar_linhas_csv_exige_campos():
    with pytest.raises(ErroApi) as exc:
        preparar_linhas_csv("tema,assunto,resposta\nCNH,,Texto\n")
    assert exc.value.erro == "csv_invalid"


def test_preparar_linhas_csv_vazio():
    with pytest.raises(ErroApi) as exc:
        preparar_linhas_csv("tema,assunto,resposta\n")
    assert exc.value.erro == "csv_empty"


def test_listar_respostas_paginado(client, banco, leitor):
    banco.tabelas["respostas"] = _linhas(15)

    r = client.get("/api/respostas", params={"pagina": 2}, headers=leitor)

    assert r.status_code == 200
    corpo = r.json()
    assert corpo["pagina"] == 2
    assert corpo["total_paginas"] == 2
    assert len(corpo["itens"]) == 3
    assert corpo["itens"][0]["tags"] == ["a", "b"]
    assert corpo["estatisticas"]["total"] == 15
    assert corpo["estatisticas"]["favoritas"] == 1


def test_listar_respostas_com_busca_e_filtro(client, banco, leitor):
    banco.tabelas["respostas"] = _linhas(4)

    r = client.get("/api/respostas", params={"busca": "assunto 3", "tema": "CNH"}, headers=leitor)

    assert [i["id"] for i in r.json()["itens"]] == ["3"]
    assert banco.buscas == [",".join(f"{c}.ilike.%assunto 3%" for c in
                                     ("tema", "subtema", "assunto", "produto", "canal", "status", "resposta", "tags"))]


def test_leitor_nao_cria(client, leitor):
    r = client.post("/api/respostas", headers=leitor, json={"tema": "CNH", "assunto": "x", "resposta": "y"})
    assert r.status_code == 403
    assert r.json()["error"] == "not_allowed"


def test_supervisor_cria_resposta(client, banco, supervisor):
    r = client.post("/api/respostas", headers=supervisor,
                    json={"tema": "CNH", "assunto": "Renovação", "resposta": "Texto", "tags": "a | b"})

    assert r.status_code == 200
    criada = banco.tabelas["respostas"][0]
    assert criada["tags"] == "a|b"
    assert criada["canal"] == "Chat"
    assert criada["status"] == "Ativa"
    assert banco.tabelas["usage_events"][0]["event"] == "create"


def test_supervisor_nao_exclui(client, banco, supervisor):
    banco.tabelas["respostas"] = _linhas(1)
    r = client.delete("/api/respostas/1", headers=supervisor)
    assert r.status_code == 403
    assert len(banco.tabelas["respostas"]) == 1


def test_admin_exclui(client, banco, admin):
    banco.tabelas["respostas"] = _linhas(2)
    r = client.delete("/api/respostas/1", headers=admin)
    assert r.status_code == 200
    assert [l["id"] for l in banco.tabelas["respostas"]] == ["2"]


def test_evento_de_uso_nao_interrompe(client, banco, supervisor):
    banco.falhas[("usage_events", "insert")] = "rls"
    r = client.put("/api/respostas/1", headers=supervisor, json={"tema": "CNH", "assunto": "x", "resposta": "y"})
    assert r.status_code == 200


def test_favoritar(client, banco, supervisor):
    r = client.post("/api/respostas/7/favorito", headers=supervisor, json={"valor": True})
    assert r.status_code == 200
    assert banco.rpcs_chamadas("set_resposta_favorito") == [{"p_resposta_id": "7", "p_value": True}]


def test_favoritar_falha(client, banco, admin):
    banco.rpcs["set_resposta_favorito"] = ErroFalso("boom")
    r = client.post("/api/respostas/7/favorito", headers=admin, json={"valor": False})
    assert r.status_code == 500
    assert r.json()["error"] == "favorite_failed"


def test_prompt_da_resposta(client, banco, leitor):
    banco.tabelas["respostas"] = _linhas(1)

    r = client.get("/api/respostas/1/prompt", headers=leitor)

    assert r.status_code == 200
    corpo = r.json()
    assert "Assunto: Assunto 1" in corpo["prompt"]
    assert corpo["gemini_url"] == "https://gemini.google.com/app"


def test_prompt_resposta_inexistente(client, leitor):
    r = client.get("/api/respostas/99/prompt", headers=leitor)
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


def test_evento_invalido(client, leitor):
    r = client.post("/api/respostas/1/eventos", headers=leitor, json={"evento": "hack"})
    assert r.status_code == 400


def test_importar_csv_em_lotes(client, banco, admin):
    linhas = "\n".join(f"CNH,Assunto {i},Texto {i}" for i in range(301))
    arquivo = ("respostas.csv", f"tema,assunto,resposta\n{linhas}\n".encode("utf-8"), "text/csv")

    r = client.post("/api/respostas/importar", headers=admin, files={"arquivo": arquivo})

    assert r.status_code == 200
    assert r.json()["linhas"] == 301
    lotes = [len(p) for tabela, op, p in banco.operacoes if tabela == "respostas" and op == "upsert"]
    assert lotes == [300, 1]


def test_importar_csv_invalido(client, admin):
    arquivo = ("respostas.csv", "tema,assunto\nCNH,x\n".encode("utf-8"), "text/csv")
    r = client.post("/api/respostas/importar", headers=admin, files={"arquivo": arquivo})
    assert r.status_code == 400
    assert r.json()["error"] == "csv_invalid"


def test_importar_csv_falha_no_banco(client, banco, admin):
    banco.falhas[("respostas", "upsert")] = "duplicate key"
    arquivo = ("respostas.csv", "tema,assunto,resposta\nCNH,x,y\n".encode("utf-8"), "text/csv")
    r = client.post("/api/respostas/importar", headers=admin, files={"arquivo": arquivo})
    assert r.status_code == 500
    assert r.json() == {"ok": False, "error": "import_failed", "details": "duplicate key"}


def test_exportar_csv(client, banco, leitor):
    banco.tabelas["respostas"] = _linhas(2)

    r = client.get("/api/respostas/exportar", headers=leitor)

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    linhas = r.text.strip().splitlines()
    assert linhas[0] == "id,tema,subtema,assunto,produto,canal,status,tags,resposta,favorito,updated_at"
    assert len(linhas) == 3


def test_auditoria_somente_admin(client, supervisor):
    r = client.get("/api/respostas/auditoria", headers=supervisor)
    assert r.status_code == 403
    assert r.json()["error"] == "not_admin"


def test_auditoria(client, banco, admin):
    banco.rpcs["list_respostas_audit"] = [
        {"id": 1, "resposta_id": "9", "action": "UPDATE", "changed_by": "u2", "changed_by_email": "b@x",
         "old_row": {"tema": "CNH", "resposta": "velho"}, "new_row": {"tema": "CNH", "resposta": "novo"}},
        {"id": 2, "resposta_id": "8", "action": "INSERT", "changed_by": "u3", "changed_by_email": "c@x",
         "old_row": None, "new_row": {"tema": "Veículos"}},
    ]

    r = client.get("/api/respostas/auditoria", params={"acao": "Todos", "busca": "velho"}, headers=admin)

    assert r.status_code == 200
    corpo = r.json()
    assert corpo["usuarios"] == ["Todos", "u2", "u3"]
    assert [l["id"] for l in corpo["linhas"]] == [1]
    assert corpo["linhas"][0]["alteracoes"] == [{"field": "resposta", "before": "velho", "after": "novo"}]
    assert banco.rpcs_chamadas("list_respostas_audit") == [{"p_user": None, "p_action": None, "p_limit": 300}]


def test_auditoria_filtra_por_usuario(client, banco, admin):
    banco.rpcs["list_respostas_audit"] = [
        {"id": 1, "resposta_id": "9", "action": "UPDATE", "changed_by": "u2",
         "old_row": {"tema": "CNH"}, "new_row": {"tema": "Veículos"}},
    ]

    r = client.get("/api/respostas/auditoria", params={"usuario": "u2"}, headers=admin)

    assert r.status_code == 200
    assert r.json()["usuarios"] == ["Todos", "u2"]
    assert banco.rpcs_chamadas("list_respostas_audit") == [{"p_user": "u2", "p_action": None, "p_limit": 300}]
