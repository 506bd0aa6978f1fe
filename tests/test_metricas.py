from backend.domain.metricas import ranking_por_usuario
from conftest import ErroFalso


def test_ranking_soma_eventos_por_usuario():
    linhas = [
        {"user_id": "u1", "email": "a@x", "event": "copy", "total": 2},
        {"user_id": "u2", "email": "b@x", "event": "view", "total": 5},
        {"user_id": "u1", "email": "a@x", "event": "prompt", "total": 4},
    ]
    assert ranking_por_usuario(linhas) == [
        {"user_id": "u1", "email": "a@x", "total": 6},
        {"user_id": "u2", "email": "b@x", "total": 5},
    ]


def test_metricas_somente_admin(client, supervisor):
    r = client.get("/api/metricas", headers=supervisor)
    assert r.status_code == 403
    assert r.json()["error"] == "not_admin"


def test_metricas_do_periodo(client, banco, admin):
    banco.rpcs["metrics_usage_by_user"] = [{"user_id": "u1", "email": "a@x", "event": "view", "total": 3}]

    r = client.get("/api/metricas", params={"dias": 30}, headers=admin)

    assert r.status_code == 200
    assert r.json()["ranking"] == [{"user_id": "u1", "email": "a@x", "total": 3}]
    params = banco.rpcs_chamadas("metrics_usage_by_user")[0]
    assert params["p_from"] < params["p_to"]


def test_metricas_falha(client, banco, admin):
    banco.rpcs["metrics_usage_by_user"] = ErroFalso("function missing")
    r = client.get("/api/metricas", headers=admin)
    assert r.status_code == 500
    assert r.json() == {"ok": False, "error": "metrics_failed", "details": "function missing"}
