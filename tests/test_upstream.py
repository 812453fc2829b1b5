from __future__ import annotations

import httpx
import pytest

from depot.mirror.upstream import UPSTREAM_FAILURE_COUNTER, UpstreamResolver


MIRROR = "https://mirror.internal/maven2"
ORIGIN = "https://repo.example.org/maven2"
ARTIFACT = "org/acme/lib/1.0/lib-1.0.jar"


def _resolver(upstreams, *bases: str) -> UpstreamResolver:
    client = httpx.AsyncClient(transport=upstreams.transport())
    return UpstreamResolver(list(bases) or [MIRROR, ORIGIN], client)


async def _body(result) -> bytes:
    data = b"".join([chunk async for chunk in result.iter_bytes()])
    await result.aclose()
    return data


def test_build_url_strips_trailing_slashes_and_quotes() -> None:
    assert UpstreamResolver.build_url("https://mirror.internal/maven2///", ARTIFACT) == f"{MIRROR}/{ARTIFACT}"
    assert UpstreamResolver.build_url(MIRROR, "org/my lib.jar") == f"{MIRROR}/org/my%20lib.jar"


def test_resolver_requires_upstreams() -> None:
    with pytest.raises(ValueError):
        UpstreamResolver([], httpx.AsyncClient())


@pytest.mark.anyio
async def test_first_upstream_wins_and_second_is_not_contacted(upstreams) -> None:
    upstreams.add(f"{MIRROR}/{ARTIFACT}", content=b"from-mirror")
    upstreams.add(f"{ORIGIN}/{ARTIFACT}", content=b"from-origin")

    result = await _resolver(upstreams).fetch(ARTIFACT)

    assert result is not None
    assert result.url == f"{MIRROR}/{ARTIFACT}"
    assert await _body(result) == b"from-mirror"
    assert upstreams.requested == [f"{MIRROR}/{ARTIFACT}"]


@pytest.mark.anyio
async def test_client_error_falls_back_to_next_upstream(upstreams) -> None:
    upstreams.add(f"{MIRROR}/{ARTIFACT}", status_code=403)
    upstreams.add(f"{ORIGIN}/{ARTIFACT}", content=b"from-origin")

    result = await _resolver(upstreams).fetch(ARTIFACT)

    assert result is not None
    assert result.url == f"{ORIGIN}/{ARTIFACT}"
    assert await _body(result) == b"from-origin"
    assert upstreams.requested == [f"{MIRROR}/{ARTIFACT}", f"{ORIGIN}/{ARTIFACT}"]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "failure",
    [
        {"status_code": 503},
        {"error": httpx.ConnectError},
        {"error": httpx.ReadTimeout},
    ],
)
async def test_transient_failures_are_absorbed(upstreams, failure) -> None:
    upstreams.add(f"{MIRROR}/{ARTIFACT}", **failure)
    upstreams.add(f"{ORIGIN}/{ARTIFACT}", content=b"from-origin")
    before = UPSTREAM_FAILURE_COUNTER.value

    result = await _resolver(upstreams).fetch(ARTIFACT)

    assert result is not None
    assert await _body(result) == b"from-origin"
    assert UPSTREAM_FAILURE_COUNTER.value == before + 1


@pytest.mark.anyio
async def test_exhausted_upstreams_return_none(upstreams) -> None:
    upstreams.add(f"{MIRROR}/{ARTIFACT}", error=httpx.ConnectError)
    upstreams.add(f"{ORIGIN}/{ARTIFACT}", status_code=500)
    third = "https://third.example.net/repo"

    result = await _resolver(upstreams, MIRROR, ORIGIN, third).fetch(ARTIFACT)

    assert result is None
    assert upstreams.requested == [f"{MIRROR}/{ARTIFACT}", f"{ORIGIN}/{ARTIFACT}", f"{third}/{ARTIFACT}"]


@pytest.mark.anyio
async def test_redirect_to_artifact_is_followed(upstreams) -> None:
    upstreams.add(f"{MIRROR}/{ARTIFACT}", content=b"jar")

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "cdn.example.org":
            return httpx.Response(302, headers={"Location": f"{MIRROR}/{ARTIFACT}"})
        return await upstreams.handle(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    result = await UpstreamResolver(["https://cdn.example.org/repo"], client).fetch(ARTIFACT)

    assert result is not None
    assert await _body(result) == b"jar"
