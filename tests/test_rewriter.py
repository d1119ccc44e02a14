import asyncio
import threading

import pytest

from apphost import db
from apphost.notifications import ResourceNotificationService
from apphost.rewriter import CodespacesConfigError, UrlRewriter, rewrite_url
from apphost.runtime import Resource, ResourceEvent, ResourceSnapshot, UrlSnapshot
from apphost.settings import Settings

NAME = "fuzzy-octo-spoon"
DOMAIN = "app.github.dev"


def _snapshot(*urls: UrlSnapshot, state: str = "Running") -> ResourceSnapshot:
    return ResourceSnapshot(resource_type="Project", state=state, urls=tuple(urls))


def _rewriter(codespace_settings) -> tuple[UrlRewriter, ResourceNotificationService]:
    rns = ResourceNotificationService()
    return UrlRewriter(rns, codespace_settings), rns


def test_internal_url_is_left_alone():
    u = UrlSnapshot("http://localhost:5380/", is_internal=True)
    assert rewrite_url(u, NAME, DOMAIN) is None


@pytest.mark.parametrize(
    "url,expected",
    [
        ("http://localhost:5380/api/items", f"http://{NAME}-5380.{DOMAIN}/api/items"),
        ("https://localhost:7380/", f"https://{NAME}-7380.{DOMAIN}/"),
        ("http://localhost:5080", f"http://{NAME}-5080.{DOMAIN}/"),
        ("http://localhost:5080/search?q=1", f"http://{NAME}-5080.{DOMAIN}/search"),
        ("https://localhost/", f"https://{NAME}-443.{DOMAIN}/"),
        ("http://localhost/", f"http://{NAME}-80.{DOMAIN}/"),
    ],
)
def test_localhost_url_is_forwarded(url, expected):
    new = rewrite_url(UrlSnapshot(url, name="http"), NAME, DOMAIN)
    assert new is not None
    assert new.url == expected
    assert new.name == "http"
    assert new.is_internal is False


@pytest.mark.parametrize(
    "url",
    [
        "http://example.com:5000/",
        "http://127.0.0.1:5000/",
        "tcp://localhost:5432",
        "http://localhost.example.com/",
    ],
)
@pytest.mark.parametrize("is_internal", [True, False])
def test_other_hosts_and_schemes_are_left_alone(url, is_internal):
    assert rewrite_url(UrlSnapshot(url, is_internal=is_internal), NAME, DOMAIN) is None


def test_rewrite_preserves_order_and_untouched_entries(codespace_settings):
    rewriter, _ = _rewriter(codespace_settings)
    a = UrlSnapshot("http://example.com/", name="a")
    b = UrlSnapshot("http://localhost:5000/x", name="b")
    c = UrlSnapshot("http://localhost:5001/", is_internal=True, name="c")

    urls = rewriter.rewrite(_snapshot(a, b, c))

    assert urls is not None
    assert len(urls) == 3
    assert urls[0] is a
    assert urls[1] == UrlSnapshot(f"http://{NAME}-5000.{DOMAIN}/x", name="b")
    assert urls[2] is c


def test_rewrite_returns_none_when_nothing_qualifies(codespace_settings):
    rewriter, _ = _rewriter(codespace_settings)
    snap = _snapshot(UrlSnapshot("http://example.com/"), UrlSnapshot("http://localhost:1/", is_internal=True))
    assert rewriter.rewrite(snap) is None


def test_duplicate_entries_are_each_replaced(codespace_settings):
    rewriter, _ = _rewriter(codespace_settings)
    u = UrlSnapshot("http://localhost:5000/")
    urls = rewriter.rewrite(_snapshot(u, u))
    assert urls is not None
    assert len(urls) == 2
    assert urls[0] == urls[1]
    assert urls[0].url == f"http://{NAME}-5000.{DOMAIN}/"


def test_malformed_url_is_skipped_and_logged(codespace_settings):
    rewriter, _ = _rewriter(codespace_settings)
    bad = UrlSnapshot("http://localhost:notaport/")
    good = UrlSnapshot("http://localhost:5000/")

    urls = rewriter.rewrite(_snapshot(bad, good), resource_id="apiservice")

    assert urls is not None
    assert urls[0] is bad
    assert urls[1].url == f"http://{NAME}-5000.{DOMAIN}/"
    warns = [e for e in db.latest_events(10) if e["level"] == "WARN"]
    assert warns and warns[0]["resource_name"] == "apiservice"


def test_missing_codespace_name_fails_at_construction():
    rns = ResourceNotificationService()
    with pytest.raises(CodespacesConfigError, match="CODESPACE_NAME"):
        UrlRewriter(rns, Settings(codespaces=True, port_forwarding_domain=DOMAIN))


def test_missing_forwarding_domain_fails_at_construction():
    rns = ResourceNotificationService()
    with pytest.raises(CodespacesConfigError, match="GITHUB_CODESPACES_PORT_FORWARDING_DOMAIN"):
        UrlRewriter(rns, Settings(codespaces=True, codespace_name=NAME))


@pytest.mark.asyncio
async def test_process_event_without_candidates_does_not_publish(codespace_settings):
    rewriter, rns = _rewriter(codespace_settings)
    resource = Resource("db")
    snap = rns.register(resource, _snapshot(UrlSnapshot("tcp://localhost:5432")))

    calls = []
    original = rns.publish_update

    async def spy(resource_id, update):
        calls.append(resource_id)
        return await original(resource_id, update)

    rns.publish_update = spy

    published = await rewriter.process_event(ResourceEvent("db", resource, snap))

    assert published is False
    assert calls == []


@pytest.mark.asyncio
async def test_process_event_publishes_once_and_keeps_other_fields(codespace_settings):
    rewriter, rns = _rewriter(codespace_settings)
    resource = Resource("web")
    snap = rns.register(
        resource,
        ResourceSnapshot(
            resource_type="Project",
            state="Running",
            urls=(UrlSnapshot("http://localhost:5080/"),),
            properties=(("replicas", 1),),
        ),
    )

    assert await rewriter.process_event(ResourceEvent("web", resource, snap)) is True

    new = rns.get_snapshot("web")
    assert new.urls == (UrlSnapshot(f"http://{NAME}-5080.{DOMAIN}/"),)
    assert new.state == "Running"
    assert new.properties == (("replicas", 1),)
    assert new.created_at == snap.created_at


@pytest.mark.asyncio
async def test_run_rewrites_existing_and_later_resources_until_stopped(codespace_settings):
    rewriter, rns = _rewriter(codespace_settings)
    rns.register(Resource("api"), _snapshot(UrlSnapshot("http://localhost:5380/")))
    stop = asyncio.Event()
    task = asyncio.create_task(rewriter.run(stop))

    snap = await asyncio.wait_for(
        rns.wait_for_resource("api", lambda s: "github.dev" in s.urls[0].url), timeout=2
    )
    assert snap.urls[0].url == f"http://{NAME}-5380.{DOMAIN}/"

    rns.register(Resource("web"), _snapshot(UrlSnapshot("https://localhost:7080/")))
    snap = await asyncio.wait_for(
        rns.wait_for_resource("web", lambda s: "github.dev" in s.urls[0].url), timeout=2
    )
    assert snap.urls[0].url == f"https://{NAME}-7080.{DOMAIN}/"

    stop.set()
    await asyncio.wait_for(task, timeout=2)
    assert task.exception() is None


@pytest.mark.asyncio
async def test_run_ends_when_channel_closes(codespace_settings):
    rewriter, rns = _rewriter(codespace_settings)
    task = asyncio.create_task(rewriter.run())
    await asyncio.sleep(0)
    rns.close()
    await asyncio.wait_for(task, timeout=2)
    messages = [e["message"] for e in db.latest_events(10)]
    assert "URL rewriter stopped" in messages


@pytest.mark.asyncio
async def test_run_survives_malformed_url(codespace_settings):
    rewriter, rns = _rewriter(codespace_settings)
    rns.register(Resource("bad"), _snapshot(UrlSnapshot("http://localhost:notaport/")))
    rns.register(Resource("good"), _snapshot(UrlSnapshot("http://localhost:5000/")))
    stop = asyncio.Event()
    task = asyncio.create_task(rewriter.run(stop))

    snap = await asyncio.wait_for(
        rns.wait_for_resource("good", lambda s: "github.dev" in s.urls[0].url), timeout=2
    )
    assert snap.urls[0].url == f"http://{NAME}-5000.{DOMAIN}/"
    assert not task.done()

    stop.set()
    await asyncio.wait_for(task, timeout=2)


@pytest.mark.asyncio
async def test_rewrite_keeps_state_published_after_the_event(codespace_settings):
    rewriter, rns = _rewriter(codespace_settings)
    resource = Resource("web")
    stale = rns.register(resource, _snapshot(UrlSnapshot("http://localhost:5080/"), state="Starting"))
    await rns.publish_update("web", lambda s: s.with_state("Running"))

    assert await rewriter.process_event(ResourceEvent("web", resource, stale)) is True

    current = rns.get_snapshot("web")
    assert current.state == "Running"
    assert current.urls == (UrlSnapshot(f"http://{NAME}-5080.{DOMAIN}/"),)


@pytest.mark.asyncio
async def test_event_log_writes_stay_off_the_event_loop_thread(codespace_settings, monkeypatch):
    rewriter, rns = _rewriter(codespace_settings)
    resource = Resource("api")
    snap = rns.register(
        resource,
        _snapshot(UrlSnapshot("http://localhost:notaport/"), UrlSnapshot("http://localhost:5380/")),
    )

    loop_thread = threading.get_ident()
    on_loop: list[bool] = []
    connect = db.sqlite3.connect

    def recording_connect(*args, **kwargs):
        on_loop.append(threading.get_ident() == loop_thread)
        return connect(*args, **kwargs)

    monkeypatch.setattr(db.sqlite3, "connect", recording_connect)

    assert await rewriter.process_event(ResourceEvent("api", resource, snap)) is True

    # one WARN for the malformed URL, one INFO for the rewrite
    assert on_loop == [False, False]
