from fastapi.testclient import TestClient

from backend.netpulse.main import (
    _resolve_allowed_origins,
    _split_raw_origins,
    app,
)

LOCAL_DEVELOPMENT_ORIGIN = "http://localhost:5173"


def test_split_raw_origins_accepts_commas_and_whitespace():
    raw = "http://localhost:5173, http://127.0.0.1:5173 http://0.0.0.0:5173"
    assert _split_raw_origins(raw) == [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://0.0.0.0:5173",
    ]


def test_resolve_allowed_origins_keeps_local_development_origin(monkeypatch):
    monkeypatch.setenv("BACKEND_ALLOWED_ORIGINS", "https://ops.example.co.ke/ https://noc.example.co.ke")

    origins = _resolve_allowed_origins()

    assert origins == [
        "http://localhost:5173",
        "https://noc.example.co.ke",
        "https://ops.example.co.ke",
    ]


def test_payments_endpoint_includes_cors_headers_for_local_dev_origin():
    client = TestClient(app)

    response = client.options(
        "/payments/unmatched",
        headers={
            "Origin": LOCAL_DEVELOPMENT_ORIGIN,
            "Access-Control-Request-Method": "GET",
        },
    )

    assert response.status_code == 200
    assert response.headers.get("access-control-allow-origin") == LOCAL_DEVELOPMENT_ORIGIN
