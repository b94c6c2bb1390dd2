import asyncio
import json

from blockingmachine.compiler import RuleSets
from blockingmachine.writer import (
    generate_header,
    write_rule_set,
    write_rule_sets,
    write_stats,
)


def test_hosts_header_uses_hash_comments():
    header = generate_header("Hosts", 2)
    lines = header.splitlines()

    assert lines[0] == "# Title: BlockingMachine Hosts Filter List"
    assert "# Number of rules: 2" in lines
    assert "# Format: 0.0.0.0 domain.tld" in lines
    assert any(line.startswith("# Last modified: ") for line in lines)
    assert lines[-1] == "#"


def test_adguard_headers_use_bang_comments():
    for kind in ("AdGuard", "DNS Rewrite", "Browser"):
        header = generate_header(kind, 0)
        assert all(line.startswith("!") for line in header.splitlines())


def test_dns_rewrite_header_names_target():
    header = generate_header("DNS Rewrite", 1, rewrite_target="sinkhole.example.net")

    assert "! Format: ||domain.tld^$dnsrewrite=sinkhole.example.net" in header.splitlines()


def test_dns_rewrite_header_defaults_to_published_target():
    header = generate_header("DNS Rewrite", 1)

    assert "! Format: ||domain.tld^$dnsrewrite=blockingmachine.xyz" in header.splitlines()


def test_write_rule_set_sorts_and_creates_directories(tmp_path):
    path = tmp_path / "nested" / "out" / "adguard.txt"

    count = asyncio.run(write_rule_set(path, {"||b.com^", "||a.com^"}, "! header\n!"))

    assert count == 2
    assert path.read_text(encoding="utf-8") == "! header\n!\n\n||a.com^\n||b.com^\n"


def test_write_rule_set_overwrites(tmp_path):
    path = tmp_path / "hosts.txt"
    asyncio.run(write_rule_set(path, ["0.0.0.0 a.com", "0.0.0.0 b.com"], "#"))
    asyncio.run(write_rule_set(path, ["0.0.0.0 c.com"], "#"))

    assert path.read_text(encoding="utf-8") == "#\n\n0.0.0.0 c.com\n"


def test_write_rule_sets_writes_all_four_files(tmp_path):
    sets = RuleSets(
        hosts_set={"0.0.0.0 ads.example.com"},
        adguard_set={"||ads.example.com^"},
        dns_rewrite_set={"||ads.example.com^$dnsrewrite=blockingmachine.xyz"},
    )

    written = asyncio.run(write_rule_sets(sets, tmp_path))

    assert sorted(written) == ["adguard.txt", "adguard_dnsrewrite.txt", "browserRules.txt", "hosts.txt"]
    hosts = (tmp_path / "hosts.txt").read_text(encoding="utf-8")
    assert hosts.startswith("# Title:")
    assert hosts.endswith("\n0.0.0.0 ads.example.com\n")
    browser = (tmp_path / "browserRules.txt").read_text(encoding="utf-8")
    assert "! Number of rules: 0" in browser


def test_write_stats(tmp_path):
    path = tmp_path / "stats.json"
    write_stats(path, {"rules": {"total": 3}})

    assert json.loads(path.read_text(encoding="utf-8")) == {"rules": {"total": 3}}
    assert not path.with_suffix(".tmp").exists()
