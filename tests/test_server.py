import asyncio
import time

import pytest

from simple_hmac_auth import (
    READ_BODY,
    AuthError,
    ClientConfig,
    ErrorCode,
    IncomingRequest,
    Server,
    ServerConfig,
    static_secrets,
)
from simple_hmac_auth.server import http_date, parse_http_date

API_KEY = "SAMPLE_API_KEY"
SECRET = "EXAMPLE_SECRET"


@pytest.fixture
def server(lookup, clock):
    return Server(lookup, clock=clock)


async def _rejected(server, request, body=READ_BODY):
    with pytest.raises(AuthError) as exc:
        await server.authenticate(request, body)
    assert request.authenticated is False
    return exc.value


@pytest.mark.asyncio
async def test_accepts_signed_request(server, signed_request):
    request = signed_request(data={"test": True}, query={"yes": "affirmative", "test": True})

    result = await server.authenticate(request)

    assert result.api_key == API_KEY
    assert result.secret == SECRET
    assert request.authenticated is True
    assert request.api_key == API_KEY
    assert request.secret == SECRET
    assert request.signature == result.signature


@pytest.mark.asyncio
@pytest.mark.parametrize("algorithm", ["sha1", "sha256", "sha512"])
async def test_accepts_every_algorithm(server, signed_request, algorithm):
    config = ClientConfig(api_key=API_KEY, secret=SECRET, algorithm=algorithm)
    request = signed_request(method="GET", path="/v1/items/", config=config)

    await server.authenticate(request)
    assert request.authenticated is True


@pytest.mark.asyncio
async def test_accepts_explicit_body(server, signed_request):
    request = signed_request(data="plain text body", headers={"content-type": "text/plain"})
    body = request.raw_body
    request.raw_body = None

    await server.authenticate(request, body.decode("utf-8"))
    assert request.authenticated is True


@pytest.mark.asyncio
async def test_tampered_body_is_rejected(server, signed_request):
    request = signed_request(data={"test": True})
    request.raw_body = b'{"test":false}'

    error = await _rejected(server, request)
    assert error.code == ErrorCode.SIGNATURE_INVALID


@pytest.mark.asyncio
async def test_tampered_query_is_rejected(server, signed_request):
    request = signed_request(method="GET", query={"limit": 10})
    request.url = request.url.replace("limit=10", "limit=1000")

    error = await _rejected(server, request)
    assert error.code == ErrorCode.SIGNATURE_INVALID


@pytest.mark.asyncio
async def test_tampered_header_is_rejected(server, signed_request):
    request = signed_request(data={"test": True})
    request.headers["content-type"] = "text/plain"

    error = await _rejected(server, request)
    assert error.code == ErrorCode.SIGNATURE_INVALID
    # Still annotated with what the server computed
    assert request.api_key == API_KEY
    assert request.signature is not None


@pytest.mark.asyncio
async def test_unsigned_headers_may_change(server, signed_request):
    request = signed_request(data={"test": True})
    request.headers["x-request-id"] = "anything"
    request.headers["user-agent"] = "curl/8.0"

    await server.authenticate(request)
    assert request.authenticated is True


@pytest.mark.asyncio
async def test_wrong_secret_is_rejected(lookup, clock, signed_request):
    server = Server(static_secrets({API_KEY: "OTHER_SECRET"}), clock=clock)

    error = await _rejected(server, signed_request())
    assert error.code == ErrorCode.SIGNATURE_INVALID


@pytest.mark.asyncio
async def test_missing_api_key(server):
    request = IncomingRequest(method="GET", url="/v1/items/", headers={})

    error = await _rejected(server, request)
    assert error.code == ErrorCode.API_KEY_MISSING
    assert error.to_dict() == {"code": "API_KEY_MISSING", "message": "Missing API Key"}


@pytest.mark.asyncio
async def test_authorization_header_without_key(server):
    request = IncomingRequest(method="GET", url="/v1/items/?apiKey=SAMPLE_API_KEY", headers={"authorization": "api-key"})

    error = await _rejected(server, request)
    assert error.code == ErrorCode.API_KEY_MISSING


@pytest.mark.asyncio
async def test_unrecognized_api_key(server):
    request = IncomingRequest(method="GET", url="/", headers={"authorization": "api-key NOBODY"})

    error = await _rejected(server, request)
    assert error.code == ErrorCode.API_KEY_UNRECOGNIZED
    assert "NOBODY" in error.message


def test_api_key_sources(server):
    header = IncomingRequest(
        method="GET", url="/?apiKey=FROM_QUERY", headers={"Authorization": "api-key FROM_HEADER"}
    )
    parsed_query = IncomingRequest(method="GET", url="/?apiKey=FROM_URL", query={"apiKey": "FROM_FRAMEWORK"})
    raw_query = IncomingRequest(method="GET", url="/items?limit=5&apiKey=FROM_URL")

    assert server.api_key_for_request(header) == "FROM_HEADER"
    assert server.api_key_for_request(parsed_query) == "FROM_FRAMEWORK"
    assert server.api_key_for_request(raw_query) == "FROM_URL"
    assert server.api_key_for_request(IncomingRequest(method="GET", url="/items")) is None


@pytest.mark.asyncio
async def test_missing_signature(server, signed_request):
    request = signed_request()
    del request.headers["signature"]

    error = await _rejected(server, request)
    assert error.code == ErrorCode.SIGNATURE_HEADER_MISSING
    assert request.api_key == API_KEY


@pytest.mark.asyncio
async def test_missing_date(server, signed_request):
    request = signed_request()
    del request.headers["date"]

    error = await _rejected(server, request)
    assert error.code == ErrorCode.DATE_HEADER_MISSING


@pytest.mark.asyncio
async def test_unparseable_date(server, signed_request):
    request = signed_request()
    request.headers["date"] = "yesterday-ish"

    error = await _rejected(server, request)
    assert error.code == ErrorCode.DATE_HEADER_INVALID
    assert "time" in error.details


@pytest.mark.asyncio
async def test_request_just_inside_skew_is_accepted(server, signed_request):
    request = signed_request(age=59)

    await server.authenticate(request)
    assert request.authenticated is True


@pytest.mark.asyncio
async def test_request_just_outside_skew_is_rejected(server, signed_request):
    error = await _rejected(server, signed_request(age=61))

    assert error.code == ErrorCode.DATE_HEADER_INVALID
    assert error.details["time"] == "Tue, 14 Nov 2023 22:13:20 GMT"


@pytest.mark.asyncio
async def test_custom_skew(lookup, clock, signed_request):
    server = Server(lookup, ServerConfig(permitted_timestamp_skew=300), clock=clock)

    await server.authenticate(signed_request(age=240))
    error = await _rejected(server, signed_request(age=301))
    assert error.code == ErrorCode.DATE_HEADER_INVALID


@pytest.mark.asyncio
async def test_future_dates_are_accepted(server, signed_request):
    request = signed_request(age=-3600)

    await server.authenticate(request)
    assert request.authenticated is True


@pytest.mark.asyncio
async def test_malformed_signature_header(server, signed_request):
    request = signed_request()
    request.headers["signature"] = "simple-hmac-auth sha256"

    error = await _rejected(server, request)
    assert error.code == ErrorCode.SIGNATURE_HEADER_INVALID


@pytest.mark.asyncio
async def test_unsupported_algorithm_in_header(server, signed_request):
    request = signed_request()
    _, _, signature = request.headers["signature"].split()
    request.headers["signature"] = f"simple-hmac-auth md5 {signature}"

    error = await _rejected(server, request)
    assert error.code == ErrorCode.HMAC_ALGORITHM_INVALID


@pytest.mark.asyncio
async def test_checks_run_in_order(server):
    # Unknown key wins over the missing signature and date headers
    request = IncomingRequest(method="GET", url="/", headers={"authorization": "api-key NOBODY"})
    assert (await _rejected(server, request)).code == ErrorCode.API_KEY_UNRECOGNIZED

    # Missing signature wins over the missing date
    request = IncomingRequest(method="GET", url="/", headers={"authorization": f"api-key {API_KEY}"})
    assert (await _rejected(server, request)).code == ErrorCode.SIGNATURE_HEADER_MISSING


@pytest.mark.asyncio
async def test_authenticated_flag_is_reset(server, signed_request):
    request = signed_request()
    request.authenticated = True
    request.headers["signature"] = "simple-hmac-auth sha256 0000"

    await _rejected(server, request)


@pytest.mark.asyncio
async def test_missing_secret_lookup(clock, signed_request):
    server = Server(None, clock=clock)

    error = await _rejected(server, signed_request())
    assert error.code == ErrorCode.INTERNAL_ERROR_SECRET_DISCOVERY


@pytest.mark.asyncio
async def test_secret_lookup_failure(clock, signed_request):
    async def broken(api_key):
        raise RuntimeError("database unavailable")

    server = Server(broken, clock=clock)

    error = await _rejected(server, signed_request())
    assert error.code == ErrorCode.INTERNAL_ERROR_SECRET_DISCOVERY
    assert "database unavailable" in error.message
    assert isinstance(error.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_secret_lookup_failure_keeps_its_code(clock, signed_request):
    class LookupFailure(Exception):
        code = "SECRET_STORE_DOWN"

    async def broken(api_key):
        raise LookupFailure("down for maintenance")

    server = Server(broken, clock=clock)

    error = await _rejected(server, signed_request())
    assert error.code == "SECRET_STORE_DOWN"
    assert error.code_value == "SECRET_STORE_DOWN"


@pytest.mark.asyncio
async def test_secret_lookup_auth_error_passes_through(clock, signed_request):
    async def revoked(api_key):
        raise AuthError("Key revoked", ErrorCode.API_KEY_UNRECOGNIZED)

    server = Server(revoked, clock=clock)

    error = await _rejected(server, signed_request())
    assert error.code == ErrorCode.API_KEY_UNRECOGNIZED
    assert error.message == "Key revoked"


@pytest.mark.asyncio
async def test_secret_lookup_timeout(clock, signed_request):
    async def never(api_key):
        await asyncio.Event().wait()

    server = Server(never, ServerConfig(secret_lookup_timeout=0.2), clock=clock)

    start = time.monotonic()
    error = await _rejected(server, signed_request())
    elapsed = time.monotonic() - start

    assert error.code == ErrorCode.INTERNAL_ERROR_SECRET_TIMEOUT
    assert 0.19 <= elapsed < 1.0


@pytest.mark.asyncio
async def test_late_secret_is_discarded(clock, signed_request):
    async def slow(api_key):
        await asyncio.sleep(0.3)
        return SECRET

    server = Server(slow, ServerConfig(secret_lookup_timeout=0.05), clock=clock)
    request = signed_request()

    error = await _rejected(server, request)
    assert error.code == ErrorCode.INTERNAL_ERROR_SECRET_TIMEOUT

    await asyncio.sleep(0.35)
    assert request.secret is None
    assert request.authenticated is False


async def _chunks(*parts):
    for part in parts:
        yield part


@pytest.mark.asyncio
async def test_reads_body_from_stream(server, signed_request):
    request = signed_request(data={"name": "bear", "count": 3})
    body = request.raw_body
    request.raw_body = None
    request.stream = _chunks(body[:5], body[5:])

    await server.authenticate(request, READ_BODY)

    assert request.authenticated is True
    assert request.raw_body == body


@pytest.mark.asyncio
async def test_stream_over_limit_is_rejected(lookup, clock):
    closed = []

    async def stream():
        try:
            yield b"0123456789"
            yield b"0123456789"
            yield b"never read"
        finally:
            closed.append(True)

    # 15 bytes
    server = Server(lookup, ServerConfig(body_size_limit=0.000015), clock=clock)
    request = IncomingRequest(method="POST", url="/", stream=stream())

    error = await _rejected(server, request)
    assert error.code == ErrorCode.BODY_TOO_LARGE
    assert error.code_value == "ETOOLONG"
    assert closed == [True]


@pytest.mark.asyncio
async def test_body_at_limit_is_read(lookup, clock):
    server = Server(lookup, ServerConfig(body_size_limit=0.00001), clock=clock)
    request = IncomingRequest(method="POST", url="/", stream=_chunks(b"01234", b"56789"))

    assert await server.read_body(request) == b"0123456789"


@pytest.mark.asyncio
async def test_no_body_reads_as_empty(server):
    assert await server.read_body(IncomingRequest(method="GET", url="/")) == b""


def test_incoming_request_headers_are_case_insensitive():
    request = IncomingRequest(method="GET", url="/items/?a=1", headers={"Content-Type": "text/plain"})

    assert request.header("content-type") == "text/plain"
    assert request.header("CONTENT-TYPE") == "text/plain"
    assert request.path == "/items/"
    assert request.query_string == "a=1"


def test_http_dates():
    moment = parse_http_date("Tue, 20 Apr 2016 18:48:24 GMT")

    assert moment is not None
    assert moment.timestamp() == 1461178104
    assert http_date(moment) == "Tue, 20 Apr 2016 18:48:24 GMT"
    assert parse_http_date("2016-04-20T18:48:24").timestamp() == 1461178104
    assert parse_http_date("not a date") is None


@pytest.mark.asyncio
async def test_accepts_path_with_leading_double_slash(server, signed_request):
    request = signed_request(method="GET", path="//v1/items", query={"limit": 5})

    assert request.path == "//v1/items"
    await server.authenticate(request)
    assert request.authenticated is True


def test_incoming_request_target_is_not_read_as_a_host():
    request = IncomingRequest(method="GET", url="//cdn.example.com/items?apiKey=KEY&x=a?b")

    assert request.path == "//cdn.example.com/items"
    assert request.query_string == "apiKey=KEY&x=a?b"
