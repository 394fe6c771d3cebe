# calllog/tests/test_middleware.py
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from calllog.config import GlobalConfig
from calllog.context import current_request
from calllog.invocation import InvocationLogger, log_call
from calllog.middleware import CallLogMiddleware, is_static_path


def create_app(**config_fields) -> FastAPI:
    cfg = GlobalConfig(**config_fields)
    il = InvocationLogger(cfg)
    app = FastAPI()
    app.add_middleware(CallLogMiddleware, config=cfg)

    @log_call(invocation_logger=il, header=True)
    def lookup(user_id: int):
        return {"user_id": user_id, "password": "pw"}

    @app.get("/users/{user_id}")
    def get_user(user_id: int):
        return lookup(user_id)

    @app.get("/ctx")
    def ctx(request: Request):
        rc = current_request()
        return {"method": rc.method, "path": rc.path, "request_id": rc.request_id}

    @app.get("/big")
    def big():
        return PlainTextResponse("y" * 100)

    @app.get("/missing")
    def missing():
        return PlainTextResponse("nope", status_code=404)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/static/app.js")
    def static_js():
        return PlainTextResponse("console.log(1)")

    return app


def test_request_context_is_bound(log_stream):
    client = TestClient(create_app())
    r = client.get("/ctx", headers={"X-Request-Id": "rid-42"})
    assert r.status_code == 200
    assert r.json() == {"method": "GET", "path": "/ctx", "request_id": "rid-42"}
    assert current_request() is None


def test_request_id_is_generated(log_stream):
    client = TestClient(create_app())
    body = client.get("/ctx").json()
    assert body["request_id"]
    assert len(body["request_id"]) == 16


def test_success_body_is_logged(log_stream):
    client = TestClient(create_app())
    r = client.get("/health")
    assert r.json() == {"status": "ok"}
    out = log_stream.getvalue()
    assert "RESPONSE LOGGING" in out
    assert "URI: /health" in out
    assert "Method: GET" in out
    assert "Status: 200" in out
    assert 'Response Body: {"status":"ok"}' in out


def test_pretty_printed_body(log_stream):
    client = TestClient(create_app(pretty_print_json=True))
    client.get("/health")
    assert 'Response Body: {\n  "status": "ok"\n}' in log_stream.getvalue()


def test_large_body_is_summarized(log_stream):
    client = TestClient(create_app(max_response_body_size=10))
    r = client.get("/big")
    assert r.text == "y" * 100
    assert "[Too large to log - 100 bytes, max: 10]" in log_stream.getvalue()


def test_non_2xx_is_not_body_logged(log_stream):
    client = TestClient(create_app())
    r = client.get("/missing")
    assert r.status_code == 404
    assert "RESPONSE LOGGING" not in log_stream.getvalue()


def test_excluded_pattern_skips_body_logging(log_stream):
    client = TestClient(create_app(exclude_patterns=("/heal",)))
    assert client.get("/health").status_code == 200
    assert "RESPONSE LOGGING" not in log_stream.getvalue()


def test_static_resources_are_skipped(log_stream):
    client = TestClient(create_app())
    assert client.get("/static/app.js").text == "console.log(1)"
    assert "RESPONSE LOGGING" not in log_stream.getvalue()
    assert is_static_path("/images/logo.png")
    assert not is_static_path("/users/1")


def test_instrumented_call_sees_request_headers(log_stream):
    client = TestClient(
        create_app(
            header={"include_headers": ("authorization", "user-agent")},
            masking={"mask_fields": ("password",)},
        )
    )
    r = client.get("/users/7", headers={"Authorization": "Bearer t0k3n", "User-Agent": "pytest"})
    assert r.json() == {"user_id": 7, "password": "pw"}
    out = log_stream.getvalue()
    assert "[lookup] CALL" in out
    assert "HTTP REQUEST INFO" in out
    assert '"URI": "/users/7"' in out
    assert '"authorization": "****"' in out
    assert '"user-agent": "pytest"' in out
    assert "t0k3n" not in out
    assert '"password": "****"' in out
