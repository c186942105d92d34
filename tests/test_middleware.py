import asyncio

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient
from starlette.responses import JSONResponse

from simple_hmac_auth import AuthError, AuthResult, ClientConfig, ErrorCode, Server, ServerConfig, prepare_request
from simple_hmac_auth.middleware import HMACAuthMiddleware, require_signed_request, status_for_error

API_KEY = "SAMPLE_API_KEY"
SECRET = "EXAMPLE_SECRET"

signer = ClientConfig(api_key=API_KEY, secret=SECRET, base_url="http://testserver")


def _send(client: TestClient, method, path, query=None, data=None, config=signer, mutate=None):
    prepared = prepare_request(config, method, path, query=query, data=data)
    headers = dict(prepared.headers)
    if mutate is not None:
        mutate(headers)
    return client.request(prepared.method, prepared.url, content=prepared.body, headers=headers)


def _app(server: Server, **kwargs) -> FastAPI:
    app = FastAPI()
    app.add_middleware(HMACAuthMiddleware, server=server, exclude_paths={"/health"}, **kwargs)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/v1/items/")
    async def list_items(request: Request, limit: int = 10):
        return {"limit": limit, "api_key": request.state.api_key, "authenticated": request.state.authenticated}

    @app.post("/v1/items/")
    async def create_item(request: Request):
        return {"received": await request.json(), "api_key": request.state.api_key}

    return app


@pytest.fixture
def server(lookup):
    return Server(lookup)


@pytest.fixture
def client(server):
    return TestClient(_app(server))


def test_signed_post_reaches_the_app(client):
    response = _send(client, "POST", "/v1/items/", data={"name": "bear", "tags": ["a", "b"]})

    assert response.status_code == 200
    assert response.json() == {"received": {"name": "bear", "tags": ["a", "b"]}, "api_key": API_KEY}


def test_signed_get_with_query(client):
    response = _send(client, "GET", "/v1/items/", query={"limit": 5, "filter": {"color": "brown"}})

    assert response.status_code == 200
    assert response.json() == {"limit": 5, "api_key": API_KEY, "authenticated": True}


def test_missing_signature_is_rejected(client):
    response = _send(client, "GET", "/v1/items/", mutate=lambda headers: headers.pop("signature"))

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "SIGNATURE_HEADER_MISSING"


def test_unsigned_request_without_key_is_rejected(client):
    response = client.get("/v1/items/")

    assert response.status_code == 401
    assert response.json() == {"error": {"code": "API_KEY_MISSING", "message": "Missing API Key"}}


def test_tampered_body_is_rejected(client):
    prepared = prepare_request(signer, "POST", "/v1/items/", data={"amount": 10})
    response = client.request("POST", prepared.url, content=b'{"amount":99}', headers=prepared.headers)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "SIGNATURE_INVALID"


def test_tampered_query_is_rejected(client):
    prepared = prepare_request(signer, "GET", "/v1/items/", query={"limit": 5})
    response = client.get(prepared.url.replace("limit=5", "limit=500"), headers=prepared.headers)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "SIGNATURE_INVALID"


def test_stale_date_is_rejected(client):
    def stale(headers):
        headers["date"] = "Tue, 20 Apr 2016 18:48:24 GMT"

    response = _send(client, "GET", "/v1/items/", mutate=stale)

    assert response.status_code == 401
    body = response.json()["error"]
    assert body["code"] == "DATE_HEADER_INVALID"
    assert body["time"].endswith(" GMT")


def test_excluded_paths_skip_authentication(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_oversized_body_is_rejected(lookup):
    client = TestClient(_app(Server(lookup, ServerConfig(body_size_limit=0.00001))))

    response = _send(client, "POST", "/v1/items/", data={"text": "x" * 100})

    assert response.status_code == 413
    assert response.json()["error"]["code"] == "ETOOLONG"


def test_lookup_timeout_is_server_error():
    async def never(api_key):
        await asyncio.Event().wait()

    client = TestClient(_app(Server(never, ServerConfig(secret_lookup_timeout=0.1))))

    response = _send(client, "GET", "/v1/items/")

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "INTERNAL_ERROR_SECRET_TIMEOUT"


def test_custom_handlers(server):
    accepted = []

    async def on_accepted(result, request):
        accepted.append(result.api_key)

    async def on_rejected(error, request):
        return JSONResponse(status_code=403, content={"denied": error.code_value})

    client = TestClient(_app(server, on_accepted=on_accepted, on_rejected=on_rejected))

    assert _send(client, "GET", "/v1/items/").status_code == 200
    assert accepted == [API_KEY]

    response = client.get("/v1/items/")
    assert response.status_code == 403
    assert response.json() == {"denied": "API_KEY_MISSING"}


def test_dependency(server):
    app = FastAPI()

    @app.post("/v1/orders/")
    async def create_order(request: Request, auth: AuthResult = Depends(require_signed_request(server))):
        return {"api_key": auth.api_key, "order": await request.json()}

    client = TestClient(app)

    response = _send(client, "POST", "/v1/orders/", data={"sku": "123"})
    assert response.status_code == 200
    assert response.json() == {"api_key": API_KEY, "order": {"sku": "123"}}

    response = client.post("/v1/orders/", json={"sku": "123"}, headers={"authorization": "api-key NOBODY"})
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "API_KEY_UNRECOGNIZED"


@pytest.mark.parametrize(
    "code,status",
    [
        (ErrorCode.SIGNATURE_INVALID, 401),
        (ErrorCode.API_KEY_MISSING, 401),
        (ErrorCode.BODY_TOO_LARGE, 413),
        (ErrorCode.INTERNAL_ERROR_SECRET_DISCOVERY, 500),
        (ErrorCode.INTERNAL_ERROR_SECRET_TIMEOUT, 500),
    ],
)
def test_status_for_error(code, status):
    assert status_for_error(AuthError("failed", code)) == status
