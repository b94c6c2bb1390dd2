import asyncio
import json

from aiohttp import test_utils, web

from blockingmachine.pipeline import RunContext, main, run, run_and_write
from blockingmachine.sources import Source


def make_fetch(contents, delays=None, calls=None):
    """Fake fetch collaborator backed by a url -> text mapping."""
    delays = delays or {}

    async def fetch(url):
        if calls is not None:
            calls.append(url)
        await asyncio.sleep(delays.get(url, 0))
        value = contents.get(url)
        if isinstance(value, Exception):
            raise value
        return value

    return fetch


def test_partial_source_failure_is_not_fatal():
    sources = [
        Source("one", "https://one.example.org/list.txt"),
        Source("two", "https://two.example.org/list.txt"),
        Source("three", "https://three.example.org/list.txt"),
    ]
    fetch = make_fetch({
        "https://one.example.org/list.txt": "||one.example.com^\n",
        "https://two.example.org/list.txt": None,
        "https://three.example.org/list.txt": "0.0.0.0 three.example.com\n",
    })

    result = asyncio.run(run(RunContext(sources=sources), fetch))

    assert result.stats.sources_total == 3
    assert result.stats.sources_failed == 1
    assert result.stats.sources_processed == 2
    assert result.stats.source_errors == {"https://two.example.org/list.txt": "Fetch failed"}
    assert result.sets.hosts_set == {"0.0.0.0 one.example.com", "0.0.0.0 three.example.com"}
    assert result.sets.adguard_set == {"||one.example.com^"}


def test_fetch_exception_becomes_source_failure():
    sources = [
        Source("broken", "https://broken.example.org/list.txt"),
        Source("ok", "https://ok.example.org/list.txt"),
    ]
    fetch = make_fetch({
        "https://broken.example.org/list.txt": RuntimeError("connection reset"),
        "https://ok.example.org/list.txt": "||ok.example.com^",
    })

    result = asyncio.run(run(RunContext(sources=sources), fetch))

    assert result.stats.source_errors == {"https://broken.example.org/list.txt": "connection reset"}
    assert result.sets.adguard_set == {"||ok.example.com^"}


def test_disabled_and_invalid_sources_are_not_fetched():
    calls = []
    sources = [
        Source("off", "https://off.example.org/list.txt", enabled=False),
        Source("bad", "ftp://bad.example.org/list.txt"),
        Source("on", "https://on.example.org/list.txt"),
    ]
    fetch = make_fetch({"https://on.example.org/list.txt": "||on.example.com^"}, calls=calls)

    result = asyncio.run(run(RunContext(sources=sources), fetch))

    assert calls == ["https://on.example.org/list.txt"]
    assert result.stats.sources_total == 2
    assert result.stats.sources_failed == 1
    assert result.stats.source_errors == {"ftp://bad.example.org/list.txt": "Invalid URL"}


def test_admission_follows_declaration_order_not_fetch_timing():
    first = "https://first.example.org/list.txt"
    second = "https://second.example.org/list.txt"
    sources = [Source("first", first), Source("second", second)]
    fetch = make_fetch(
        {first: "||x.example.com^\n", second: "@@||x.example.com^$important\n||y.example.com^\n"},
        delays={first: 0.05},
    )

    result = asyncio.run(run(RunContext(sources=sources), fetch))

    assert list(result.stats.source_lines) == [first, second]
    assert result.sets.adguard_set == {"@@||x.example.com^$important", "||y.example.com^"}
    assert result.stats.conflicts == 1


def test_personal_rules_are_admitted_last():
    url = "https://list.example.org/list.txt"
    context = RunContext(
        sources=[Source("list", url)],
        personal_rules="@@||ads.example.com^\n||mine.example.com^\n",
    )
    fetch = make_fetch({url: "||ads.example.com^\n||other.example.com^\n"})

    result = asyncio.run(run(context, fetch))

    assert result.sets.adguard_set == {
        "@@||ads.example.com^",
        "||other.example.com^",
        "||mine.example.com^",
    }
    assert "0.0.0.0 ads.example.com" not in result.sets.hosts_set


def test_run_with_only_personal_rules():
    context = RunContext(sources=[], personal_rules="##.banner-ad\n")

    result = asyncio.run(run(context, make_fetch({})))

    assert result.sets.browser_rules_set == {"##.banner-ad"}
    assert result.stats.sources_total == 0


def test_run_and_write_persists_sets_and_stats(tmp_path):
    url = "https://list.example.org/list.txt"
    fetch = make_fetch({url: "||ads.example.com^\n##.banner-ad\n"})

    asyncio.run(run_and_write(RunContext(sources=[Source("list", url)]), tmp_path, fetch))

    for name in ("adguard.txt", "adguard_dnsrewrite.txt", "browserRules.txt", "hosts.txt"):
        assert (tmp_path / name).exists()
    assert (tmp_path / "adguard.txt").read_text(encoding="utf-8").endswith("\n||ads.example.com^\n")
    stats = json.loads((tmp_path / "stats.json").read_text(encoding="utf-8"))
    assert stats["sources"]["processed"] == 1
    assert stats["sets"]["browser"] == 1


def test_main_fails_on_missing_source_list(tmp_path, capsys):
    code = main(["--sources", str(tmp_path / "missing.txt"), "--outdir", str(tmp_path / "out")])

    assert code == 1
    assert "ERROR" in capsys.readouterr().err
    assert not (tmp_path / "out").exists()


def test_main_with_personal_rules_only(tmp_path):
    sources = tmp_path / "sources.txt"
    sources.write_text("-https://example.org/disabled.txt\n", encoding="utf-8")
    personal = tmp_path / "personal_list.txt"
    personal.write_text("||mine.example.com^\n127.0.0.1 localhost\n", encoding="utf-8")
    outdir = tmp_path / "out"

    code = main([
        "--sources", str(sources),
        "--personal", str(personal),
        "--outdir", str(outdir),
        "--rewrite-target", "sinkhole.example.net",
    ])

    assert code == 0
    rewrite = (outdir / "adguard_dnsrewrite.txt").read_text(encoding="utf-8")
    assert rewrite.endswith("\n||mine.example.com^$dnsrewrite=sinkhole.example.net\n")
    assert "localhost" not in (outdir / "hosts.txt").read_text(encoding="utf-8")


def test_downloader_error_reaches_stats():
    async def handler(request):
        return web.Response(status=503)

    async def scenario():
        app = web.Application()
        app.router.add_get("/list.txt", handler)
        async with test_utils.TestServer(app) as server:
            url = str(server.make_url("/list.txt"))
            context = RunContext(
                sources=[
                    Source("down", url),
                    Source("inline", "data:text/plain,%7C%7Cinline.example.com%5E"),
                ],
                retries=1,
                backoff=0,
            )
            return url, await run(context)

    url, result = asyncio.run(scenario())

    assert result.stats.source_errors == {url: "HTTP 503"}
    assert result.stats.sources_processed == 1
    assert result.sets.adguard_set == {"||inline.example.com^"}
