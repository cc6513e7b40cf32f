"""Tests for JSON and url-encoded body parsing."""

from __future__ import annotations

import json

import pytest

from natours.errors import AppError
from natours.middleware.body_parser import MAX_JSON_DEPTH, BodyParser, parse_content_type
from tests.helpers.asgi import make_context, make_request


def _post(body: bytes, content_type: str = "application/json", headers: dict[str, str] | None = None):
    all_headers = {"content-type": content_type, "content-length": str(len(body))}
    all_headers.update(headers or {})
    return make_request(method="POST", path="/api/v1/tours", headers=all_headers, body=body)


async def _parse(request, parser: BodyParser | None = None):
    ctx = make_context(request)
    result = await (parser or BodyParser()).process_request(request, ctx)
    assert result is None
    return ctx


class TestParseContentType:
    def test_with_charset(self):
        assert parse_content_type("application/json; charset=UTF-8") == ("application/json", {"charset": "utf-8"})

    def test_quoted_param(self):
        assert parse_content_type('text/plain; charset="latin1"')[1] == {"charset": "latin1"}

    def test_empty(self):
        assert parse_content_type("") == ("", {})


class TestJsonBodies:
    @pytest.mark.asyncio
    async def test_object_parsed(self):
        body = {"name": "The Forest Hiker", "price": 397}
        ctx = await _parse(_post(json.dumps(body).encode()))
        assert ctx.body == body

    @pytest.mark.asyncio
    async def test_array_parsed(self):
        ctx = await _parse(_post(b'[{"rating": 5}]'))
        assert ctx.body == [{"rating": 5}]

    @pytest.mark.asyncio
    async def test_body_at_limit_parsed(self):
        filler = "x" * (10 * 1024 - len('{"a":""}'))
        raw = json.dumps({"a": filler}, separators=(",", ":")).encode()
        assert len(raw) == 10 * 1024

        ctx = await _parse(_post(raw))
        assert ctx.body["a"] == filler

    @pytest.mark.asyncio
    async def test_body_over_limit_rejected(self):
        raw = json.dumps({"a": "x" * (10 * 1024)}).encode()
        with pytest.raises(AppError) as excinfo:
            await _parse(_post(raw))
        assert excinfo.value.status_code == 413

    @pytest.mark.asyncio
    async def test_understated_content_length_still_rejected(self):
        raw = json.dumps({"a": "x" * 200}).encode()
        request = _post(raw, headers={"content-length": "10"})
        with pytest.raises(AppError) as excinfo:
            await _parse(request, BodyParser(limit=100))
        assert excinfo.value.status_code == 413

    @pytest.mark.asyncio
    async def test_invalid_content_length(self):
        with pytest.raises(AppError) as excinfo:
            await _parse(_post(b"{}", headers={"content-length": "lots"}))
        assert excinfo.value.status_code == 400

    @pytest.mark.asyncio
    async def test_malformed_json_is_400(self):
        with pytest.raises(AppError) as excinfo:
            await _parse(_post(b'{"name": '))
        assert excinfo.value.status_code == 400
        assert excinfo.value.message.startswith("Invalid JSON body")

    @pytest.mark.asyncio
    async def test_scalar_top_level_rejected(self):
        with pytest.raises(AppError) as excinfo:
            await _parse(_post(b'"just a string"'))
        assert excinfo.value.status_code == 400

    @pytest.mark.asyncio
    async def test_empty_body_leaves_empty_dict(self):
        ctx = await _parse(_post(b""))
        assert ctx.body == {}

    @pytest.mark.asyncio
    async def test_whitespace_body_is_empty_dict(self):
        ctx = await _parse(_post(b"  \n"))
        assert ctx.body == {}

    @pytest.mark.asyncio
    async def test_unsupported_charset_is_415(self):
        with pytest.raises(AppError) as excinfo:
            await _parse(_post(b"{}", content_type="application/json; charset=latin1"))
        assert excinfo.value.status_code == 415

    @pytest.mark.asyncio
    async def test_utf16_body(self):
        raw = json.dumps({"name": "Sea Explorer"}).encode("utf-16")
        ctx = await _parse(_post(raw, content_type="application/json; charset=utf-16"))
        assert ctx.body == {"name": "Sea Explorer"}

    @pytest.mark.asyncio
    async def test_raw_body_recorded(self):
        ctx = await _parse(_post(b'{"a": 1}'))
        assert ctx.raw_body == b'{"a": 1}'

    @pytest.mark.asyncio
    async def test_nesting_at_limit_parsed(self):
        raw = b"[" * MAX_JSON_DEPTH + b"]" * MAX_JSON_DEPTH
        ctx = await _parse(_post(raw))
        assert isinstance(ctx.body, list)

    @pytest.mark.asyncio
    async def test_deep_nesting_is_400(self):
        raw = b"[" * 900 + b"]" * 900
        assert len(raw) < 10 * 1024
        with pytest.raises(AppError) as excinfo:
            await _parse(_post(raw))
        assert excinfo.value.status_code == 400

    @pytest.mark.asyncio
    async def test_very_deep_object_nesting_is_400(self):
        raw = b'{"a":' * 3000 + b"1" + b"}" * 3000
        with pytest.raises(AppError) as excinfo:
            await _parse(_post(raw), BodyParser(limit=len(raw)))
        assert excinfo.value.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("constant", [b"NaN", b"Infinity", b"-Infinity"])
    async def test_non_finite_constants_rejected(self, constant):
        with pytest.raises(AppError) as excinfo:
            await _parse(_post(b'{"price": ' + constant + b"}"))
        assert excinfo.value.status_code == 400
        assert excinfo.value.message.startswith("Invalid JSON body")


class TestStreamedBodies:
    @pytest.mark.asyncio
    async def test_chunks_joined(self):
        request = make_request(
            method="POST",
            headers={"content-type": "application/json"},
            chunks=[b'{"name": ', b'"The Park Camper"}'],
        )
        ctx = await _parse(request)
        assert ctx.body == {"name": "The Park Camper"}

    @pytest.mark.asyncio
    async def test_chunked_body_stops_at_limit(self):
        delivered: list[bytes] = []
        request = make_request(
            method="POST",
            headers={"content-type": "application/json"},
            chunks=[b"x" * 4096 for _ in range(10)],
            delivered=delivered,
        )

        with pytest.raises(AppError) as excinfo:
            await _parse(request)

        assert excinfo.value.status_code == 413
        # 10 KB limit is crossed by the third 4 KB chunk; the rest is never read
        assert len(delivered) == 3


class TestFormBodies:
    @pytest.mark.asyncio
    async def test_urlencoded_parsed(self):
        ctx = await _parse(_post(b"name=Jonas&email=hello%40jonas.io", content_type="application/x-www-form-urlencoded"))
        assert ctx.body == {"name": "Jonas", "email": "hello@jonas.io"}

    @pytest.mark.asyncio
    async def test_nested_keys(self):
        ctx = await _parse(_post(b"price[lt]=1000&price[gte]=500", content_type="application/x-www-form-urlencoded"))
        assert ctx.body == {"price": {"lt": "1000", "gte": "500"}}

    @pytest.mark.asyncio
    async def test_too_many_parameters(self):
        raw = "&".join(f"k{i}=v" for i in range(6)).encode()
        with pytest.raises(AppError) as excinfo:
            await _parse(_post(raw, content_type="application/x-www-form-urlencoded"), BodyParser(parameter_limit=5))
        assert excinfo.value.status_code == 413

    @pytest.mark.asyncio
    async def test_over_limit_rejected(self):
        raw = ("a=" + "x" * (10 * 1024)).encode()
        with pytest.raises(AppError) as excinfo:
            await _parse(_post(raw, content_type="application/x-www-form-urlencoded"))
        assert excinfo.value.status_code == 413


class TestOtherContentTypes:
    @pytest.mark.asyncio
    async def test_text_plain_ignored(self):
        ctx = await _parse(_post(b"hello", content_type="text/plain"))
        assert ctx.body == {}
        assert ctx.raw_body is None

    @pytest.mark.asyncio
    async def test_no_content_type_ignored(self):
        request = make_request(method="POST", path="/api/v1/tours", body=b'{"a": 1}')
        ctx = await _parse(request)
        assert ctx.body == {}

    @pytest.mark.asyncio
    async def test_oversize_unparsed_type_not_read(self):
        raw = b"x" * (20 * 1024)
        ctx = await _parse(_post(raw, content_type="application/octet-stream"))
        assert ctx.raw_body is None
