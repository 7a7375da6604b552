import dns.message
import dns.rcode
import dns.rdatatype
import dns.rrset
import pytest

from roxy.config import DnsConfig, DnsUpstreamConfig
from roxy.dns import Cache, DnsError, DnsServer, Handler, sanitize_src_address
from roxy.trie import Trie


def _answer_for(name, address="10.0.0.1"):
    return [dns.rrset.from_text(name, 300, "IN", "A", address)]


class _CountingLookup:
    def __init__(self, address="10.0.0.1"):
        self.calls = 0
        self.address = address

    def __call__(self, name):
        self.calls += 1
        return _answer_for(name, self.address)


def _failing_lookup(name):
    raise DnsError(f"no record found for {name}", no_records=True)


def _trie(*rules):
    trie = Trie()
    for rule in rules:
        trie.insert(rule)
    return trie


def _addresses(response):
    return [rdata.address for rrset in response.answer for rdata in rrset]


def test_sanitize_rejects_port_zero():
    with pytest.raises(ValueError, match="cannot respond to src on port 0: 127.0.0.1:0"):
        sanitize_src_address("127.0.0.1", 0)


@pytest.mark.parametrize("host", ["0.0.0.0", "255.255.255.255", "::"])
def test_sanitize_rejects_unusable_hosts(host):
    with pytest.raises(ValueError, match="cannot respond to"):
        sanitize_src_address(host, 53)


def test_sanitize_accepts_normal_address():
    assert sanitize_src_address("127.0.0.1", 5353) is None
    assert sanitize_src_address("::1", 5353) is None


def test_cache_round_trip():
    cache = Cache(10, 60)
    request = dns.message.make_query("example.com.", "A")
    response = dns.message.make_response(request)
    response.answer = _answer_for(request.question[0].name)
    cache.put(response)

    again = dns.message.make_query("example.com.", "A")
    cached = cache.get(again)
    assert cached.id == again.id
    assert cached.rcode() == dns.rcode.NOERROR
    assert _addresses(cached) == ["10.0.0.1"]


def test_cache_distinguishes_types():
    cache = Cache(10, 60)
    request = dns.message.make_query("example.com.", "A")
    response = dns.message.make_response(request)
    response.answer = _answer_for(request.question[0].name)
    cache.put(response)
    assert cache.get(dns.message.make_query("example.com.", "AAAA")) is None


def test_cache_expiry():
    cache = Cache(10, 0)
    request = dns.message.make_query("example.com.", "A")
    cache.put(dns.message.make_response(request))
    assert cache.get(request) is None
    assert len(cache) == 0


def test_cache_evicts_least_recently_used():
    cache = Cache(1, 60)
    first = dns.message.make_query("a.example.com.", "A")
    second = dns.message.make_query("b.example.com.", "A")
    cache.put(dns.message.make_response(first))
    cache.put(dns.message.make_response(second))
    assert cache.get(first) is None
    assert cache.get(second) is not None


def test_handler_hijack_v4():
    handler = Handler(hijack=_trie(".foo.com"), hijack_to="127.0.0.1", lookup=_failing_lookup)
    response = handler.handle(dns.message.make_query("abc.foo.com.", "A"))
    assert _addresses(response) == ["127.0.0.1"]
    assert response.answer[0].ttl == 3600


def test_handler_hijack_v6():
    handler = Handler(hijack=_trie("bar.com"), hijack_to="::1", lookup=_failing_lookup)
    response = handler.handle(dns.message.make_query("bar.com.", "AAAA"))
    assert response.answer[0].rdtype == dns.rdatatype.AAAA
    assert _addresses(response) == ["::1"]


def test_handler_reject_returns_no_records():
    lookup = _CountingLookup()
    handler = Handler(reject=_trie(".ads.com"), lookup=lookup)
    response = handler.handle(dns.message.make_query("x.ads.com.", "A"))
    assert response.answer == []
    assert response.rcode() == dns.rcode.NOERROR
    assert lookup.calls == 0


def test_handler_upstream_and_cache():
    lookup = _CountingLookup()
    handler = Handler(cache=Cache(16, 60), lookup=lookup)
    first = handler.handle(dns.message.make_query("example.com.", "A"))
    second = handler.handle(dns.message.make_query("example.com.", "A"))
    assert _addresses(first) == ["10.0.0.1"]
    assert _addresses(second) == ["10.0.0.1"]
    assert lookup.calls == 1


def test_handler_propagates_lookup_error():
    handler = Handler(lookup=_failing_lookup)
    with pytest.raises(DnsError) as info:
        handler.handle(dns.message.make_query("missing.example.com.", "A"))
    assert info.value.no_records is True


def test_handler_requires_hijack_address():
    with pytest.raises(ValueError):
        Handler(hijack=_trie("foo.com"), lookup=_failing_lookup)


@pytest.fixture
def server():
    config = DnsConfig(listen="127.0.0.1:0", upstream=DnsUpstreamConfig(nameservers=[]))
    handler = Handler(hijack=_trie(".foo.com"), hijack_to="127.0.0.1", lookup=_failing_lookup)
    return DnsServer(config, handler=handler)


def test_datagram_round_trip(server):
    query = dns.message.make_query("foo.com.", "A")
    reply = server.handle_datagram(query.to_wire(), ("127.0.0.1", 5353))
    response = dns.message.from_wire(reply)
    assert response.id == query.id
    assert _addresses(response) == ["127.0.0.1"]


def test_datagram_from_bad_source(server):
    query = dns.message.make_query("foo.com.", "A")
    assert server.handle_datagram(query.to_wire(), ("127.0.0.1", 0)) is None


def test_datagram_garbage(server):
    assert server.handle_datagram(b"\x00\x01", ("127.0.0.1", 5353)) is None


def test_datagram_two_questions(server):
    query = dns.message.make_query("foo.com.", "A")
    query.question = [query.question[0], dns.message.make_query("bar.com.", "A").question[0]]
    assert server.handle_datagram(query.to_wire(), ("127.0.0.1", 5353)) is None


def test_datagram_lookup_error(server):
    query = dns.message.make_query("other.org.", "A")
    assert server.handle_datagram(query.to_wire(), ("127.0.0.1", 5353)) is None