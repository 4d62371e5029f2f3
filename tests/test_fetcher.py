import asyncio

import httpx

from slidecast.pipeline.fetcher import AssetFetcher, FetchRequest, guess_suffix
from slidecast.pipeline.retry import RetryPolicy


def _fetcher(handler, retries=3):
    return AssetFetcher(timeout=5.0, retries=retries, backoff_seconds=0.0, transport=httpx.MockTransport(handler))


def test_successful_fetch_writes_file(tmp_path):
    fetcher = _fetcher(lambda request: httpx.Response(200, content=b"image-bytes"))
    destination = tmp_path / "a.png"

    results = asyncio.run(fetcher.fetch_all([FetchRequest("https://assets.test/a.png", str(destination), "image")]))

    assert results[0].ok
    assert results[0].path == str(destination)
    assert destination.read_bytes() == b"image-bytes"


def test_transient_status_is_retried(tmp_path):
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(503) if len(calls) < 3 else httpx.Response(200, content=b"ok")

    results = asyncio.run(
        _fetcher(handler).fetch_all([FetchRequest("https://assets.test/a.mp3", str(tmp_path / "a.mp3"))])
    )

    assert results[0].ok
    assert len(calls) == 3


def test_retry_budget_is_bounded(tmp_path):
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(404)

    destination = tmp_path / "a.png"
    results = asyncio.run(_fetcher(handler, retries=3).fetch_all([FetchRequest("https://assets.test/a.png", str(destination))]))

    assert not results[0].ok
    assert "404" in results[0].error
    assert results[0].path is None
    assert len(calls) == 4
    assert not destination.exists()


def test_network_errors_are_reported(tmp_path):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    results = asyncio.run(
        _fetcher(handler, retries=1).fetch_all([FetchRequest("https://assets.test/a.png", str(tmp_path / "a.png"))])
    )

    assert not results[0].ok
    assert "connection refused" in results[0].error


def test_write_errors_are_not_retried(tmp_path):
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(200, content=b"data")

    destination = tmp_path / "missing-dir" / "a.png"
    results = asyncio.run(_fetcher(handler).fetch_all([FetchRequest("https://assets.test/a.png", str(destination))]))

    assert not results[0].ok
    assert "cannot write" in results[0].error
    assert len(calls) == 1


def test_one_failure_does_not_abort_the_batch(tmp_path):
    def handler(request):
        if request.url.path == "/bad.png":
            return httpx.Response(500)
        return httpx.Response(200, content=request.url.path.encode())

    requests = [
        FetchRequest("https://assets.test/one.png", str(tmp_path / "one.png")),
        FetchRequest("https://assets.test/bad.png", str(tmp_path / "bad.png")),
        FetchRequest("https://assets.test/two.png", str(tmp_path / "two.png")),
    ]
    results = asyncio.run(_fetcher(handler, retries=0).fetch_all(requests))

    assert [result.ok for result in results] == [True, False, True]
    assert [result.request for result in results] == requests
    assert (tmp_path / "two.png").read_bytes() == b"/two.png"


def test_local_files_are_copied(tmp_path):
    source = tmp_path / "source.png"
    source.write_bytes(b"local")
    fetcher = AssetFetcher(retries=0, backoff_seconds=0.0, local_root=tmp_path)
    requests = [
        FetchRequest(str(source), str(tmp_path / "plain.png")),
        FetchRequest(source.as_uri(), str(tmp_path / "uri.png")),
        FetchRequest(str(tmp_path / "nope.png"), str(tmp_path / "nope-copy.png")),
    ]

    results = asyncio.run(fetcher.fetch_all(requests))

    assert [result.ok for result in results] == [True, True, False]
    assert (tmp_path / "uri.png").read_bytes() == b"local"


def test_local_refs_are_disabled_without_root(tmp_path):
    source = tmp_path / "source.png"
    source.write_bytes(b"local")

    results = asyncio.run(
        AssetFetcher(retries=0).fetch_all([FetchRequest(str(source), str(tmp_path / "copy.png"))])
    )

    assert not results[0].ok
    assert "disabled" in results[0].error
    assert not (tmp_path / "copy.png").exists()


def test_local_refs_outside_root_are_refused(tmp_path):
    root = tmp_path / "assets"
    root.mkdir()
    secret = tmp_path / "secrets.env"
    secret.write_text("SLIDECAST_S3_SECRET_KEY=hunter2")
    (root / "link.txt").symlink_to(secret)
    fetcher = AssetFetcher(retries=0, local_root=root)
    refs = [str(secret), secret.as_uri(), str(root / ".." / "secrets.env"), str(root / "link.txt")]

    results = asyncio.run(
        fetcher.fetch_all([FetchRequest(ref, str(tmp_path / f"copy-{i}.txt")) for i, ref in enumerate(refs)])
    )

    assert [result.ok for result in results] == [False, False, False, False]
    assert all("outside" in result.error for result in results)
    assert not list(tmp_path.glob("copy-*"))


def test_disk_work_runs_off_the_event_loop(tmp_path, monkeypatch):
    offloaded = []
    original = asyncio.to_thread

    async def recording_to_thread(func, *args, **kwargs):
        offloaded.append(getattr(func, "__name__", repr(func)))
        return await original(func, *args, **kwargs)

    monkeypatch.setattr("slidecast.pipeline.fetcher.asyncio.to_thread", recording_to_thread)
    source = tmp_path / "source.png"
    source.write_bytes(b"local")
    fetcher = AssetFetcher(
        retries=0,
        local_root=tmp_path,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"remote")),
    )

    results = asyncio.run(
        fetcher.fetch_all(
            [
                FetchRequest(str(source), str(tmp_path / "copy.png")),
                FetchRequest("https://assets.test/a.png", str(tmp_path / "remote.png")),
            ]
        )
    )

    assert all(result.ok for result in results)
    assert "copyfile" in offloaded
    assert "write" in offloaded
    assert (tmp_path / "remote.png").read_bytes() == b"remote"


def test_guess_suffix():
    assert guess_suffix("https://assets.test/a/photo.JPG?x=1", ".png") == ".jpg"
    assert guess_suffix("https://assets.test/a/photo", ".png") == ".png"


def test_retry_policy_backs_off_linearly():
    delays = []
    attempts = []

    async def fake_sleep(delay):
        delays.append(delay)

    async def flaky():
        attempts.append(1)
        if len(attempts) < 4:
            raise RuntimeError("boom")
        return "done"

    policy = RetryPolicy.linear(retries=3, step=0.5)
    result = asyncio.run(policy.call(flaky, sleep=fake_sleep))

    assert result == "done"
    assert policy.max_attempts == 4
    assert delays == [0.5, 1.0, 1.5]


def test_retry_policy_stops_on_non_retryable():
    attempts = []

    async def broken():
        attempts.append(1)
        raise KeyError("fatal")

    policy = RetryPolicy.linear(retries=5, step=0.0, retryable=lambda exc: not isinstance(exc, KeyError))
    try:
        asyncio.run(policy.call(broken))
    except KeyError:
        pass
    else:  # pragma: no cover
        raise AssertionError("KeyError expected")
    assert len(attempts) == 1
