import json
import math

import pytest

from podstream_backend.routes.core.response import _json_response, status_for_result
from podstream_backend.shared import ErrorCode, Result


def test_json_response_sanitizes_non_finite_floats():
    result = Result.Ok({"a": math.nan, "b": math.inf, "items": [1.0, math.nan, {"y": -math.inf}]})
    payload = json.loads(_json_response(result).text)
    data = payload["data"]

    assert data["a"] is None
    assert data["b"] is None
    assert data["items"][1] is None
    assert data["items"][2]["y"] is None


def test_envelope_shape():
    payload = json.loads(_json_response(Result.Ok([1], total=1)).text)
    assert payload == {"ok": True, "data": [1], "error": None, "code": "OK", "meta": {"total": 1}}


@pytest.mark.parametrize(
    "code, status",
    [
        (ErrorCode.INVALID_INPUT, 400),
        (ErrorCode.INVALID_JSON, 400),
        (ErrorCode.UNAUTHORIZED, 401),
        (ErrorCode.NOT_FOUND, 404),
        (ErrorCode.CONFLICT, 409),
        (ErrorCode.STORAGE_FAILURE, 500),
        (ErrorCode.CONFLICT_RETRY_EXHAUSTED, 503),
        (ErrorCode.SERVICE_UNAVAILABLE, 503),
        (ErrorCode.TIMEOUT, 504),
        ("SOMETHING_ELSE", 500),
    ],
)
def test_status_for_result(code, status):
    assert status_for_result(Result.Err(code, "x")) == status


def test_retry_exhausted_sets_retry_after():
    response = _json_response(Result.Err(ErrorCode.CONFLICT_RETRY_EXHAUSTED, "busy"))
    assert response.status == 503
    assert response.headers["Retry-After"] == "1"


def test_explicit_status_wins():
    assert _json_response(Result.Ok({"overall": "unhealthy"}), status=503).status == 503
