import re
import time

import pytest

from roxy.servers import (
    MAX_HISTORY,
    Latency,
    LoadBalanceType,
    Peers,
    Server,
    Upstream,
    etld_plus_one,
)


def _server(address, latency=None):
    server = Server(address, remarks=f"node {address}")
    if latency is not None:
        server.push_latency(latency)
    return server


def test_history_is_bounded():
    server = _server("10.0.0.1:8388")
    values = list(range(1, 16))
    for value in values:
        server.push_latency(value)
    history = server.stat()["latencies"]
    assert len(history) == MAX_HISTORY
    assert [item["value"] for item in history] == values[-MAX_HISTORY:]
    assert server.latency() == values[-1]


def test_alive_and_failure():
    server = _server("10.0.0.1:8388", 120)
    assert server.alive() is True
    server.report_failure()
    assert server.alive() is False
    assert server.latency() == 0


def test_unchecked_server_is_down():
    server = _server("10.0.0.1:8388")
    assert server.alive() is False


def test_negative_latency_rejected():
    with pytest.raises(ValueError):
        _server("10.0.0.1:8388").push_latency(-1)


def test_stat_fields():
    server = _server("10.0.0.2:8388", 35)
    stat = server.stat()
    assert stat["address"] == "10.0.0.2:8388"
    assert stat["remarks"] == "node 10.0.0.2:8388"


def test_latency_to_dict():
    data = Latency(77).to_dict()
    assert data["value"] == 77
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{6}Z", data["timestamp"])
    assert data["timestamp"].startswith(str(time.gmtime().tm_year))


def test_choose_best_picks_lowest_alive():
    servers = [_server("a", 0), _server("b", 300), _server("c", 80), _server("d", 150)]
    peers = Peers(servers)
    assert peers.choose_best() is servers[2]
    assert peers.best() is servers[2]


def test_best_falls_back_when_dead():
    servers = [_server("a", 50), _server("b", 90)]
    peers = Peers(servers)
    peers.choose_best()
    servers[0].report_failure()
    assert peers.best() is servers[1]


def test_fallback_all_dead_returns_first():
    servers = [_server("a", 0), _server("b", 0)]
    assert Peers(servers).fallback() is servers[0]


def test_empty_peers_raise():
    with pytest.raises(LookupError):
        Peers([]).best()
    assert Peers([]).choose_best() is None


def test_by_etld_is_stable_for_same_domain():
    peers = Peers([_server(f"s{i}", 10 + i) for i in range(5)])
    first = peers.by_etld("a.example.com")
    assert peers.by_etld("b.example.com") is first
    assert peers.by_etld("example.com") is first


def test_by_etld_skips_dead_servers():
    servers = [_server("a", 0), _server("b", 40), _server("c", 0)]
    peers = Peers(servers)
    for host in ("one.example.com", "two.example.org", "three.example.net"):
        assert peers.by_etld(host) is servers[1]


def test_upstream_pick_modes():
    servers = [_server("a", 60), _server("b", 20)]
    best = Upstream(servers)
    best.peers.choose_best()
    assert best.pick("any.example.com") is servers[1]

    etld = Upstream(servers, "etld")
    assert etld.lb_type is LoadBalanceType.ETLD
    assert etld.pick("x.example.com") is etld.peers.by_etld("x.example.com")


def test_upstream_replace_and_stats():
    upstream = Upstream([_server("old", 10)])
    new = [_server("n1", 90), _server("n2", 30)]
    upstream.replace(new)
    assert [stat["address"] for stat in upstream.stats()] == ["n1", "n2"]
    assert upstream.pick("example.com") is new[1]


def test_etld_plus_one():
    assert etld_plus_one("www.example.com") == "example.com"
    assert etld_plus_one("a.b.example.co.uk") == "example.co.uk"
    assert etld_plus_one("com") is None
    assert etld_plus_one("co.uk") is None
    assert etld_plus_one("192.0.2.1") is None