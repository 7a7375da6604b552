# roxy

roxy is a library for running a private DNS server and for choosing an
upstream proxy server for outgoing connections.

## Modules

- `roxy.dns`: `DnsServer` listens on UDP and TCP at the same address and
  answers through a `Handler`. For each request the handler does four things
  in order:
  1. It checks an optional `Cache`, a least-recently-used cache in which each
     entry is kept for a fixed number of seconds.
  2. It answers names that match the hijack rules with one A or AAAA record
     (TTL one hour) for a fixed address.
  3. It returns an empty answer for names that match the reject rules.
  4. It resolves all other names to A records, or AAAA records when there are
     no A records, through the configured nameservers.

  `sanitize_src_address` refuses to reply to port 0, to unspecified addresses
  and to the IPv4 broadcast address. A handler failure raises `DnsError`.
- `roxy.trie`: `Trie` holds domain rules.
  - A rule such as `bar.com` matches only that name.
  - A rule with a leading dot, such as `.foo.com`, matches `foo.com` and every
    name under it.
  - `parse_rules` builds a trie from lines of text.
  - `load_rules` fetches a rule list over HTTP(S) and raises `RuleLoadError`
    on failure.
- `roxy.sniffing`: these functions read the target of a client connection from
  its first bytes. Failures raise `SniffError`.
  - `http_host` returns the value of the HTTP `Host:` header.
  - `tls_sni` returns the server name from a TLS ClientHello.
  - `destination_addr` returns `(host, 80)` or `(host, 443)`.
- `roxy.servers`: each `Server` keeps its last ten latency samples in
  milliseconds. A sample of 0 marks a failure, and a server with no samples
  counts as down. `Peers` and `Upstream` pick a server in one of two ways,
  set by `LoadBalanceType`:
  - `BEST`: the server chosen by `Peers.choose_best`.
  - `ETLD`: a hash of the host's registrable domain, using `etld_plus_one`
    together with `fnv` and `jumphash` from `roxy.hashing`.

  If the chosen server is down, `Peers.fallback` returns the first server that
  is alive. If none is alive, it returns the first server. `Upstream.replace`
  swaps in a new set of servers, and `Upstream.stats` reports each server's
  history.
- `roxy.controller`: `Controller` is a small HTTP service with two routes.
  `GET /stats` returns the process statistics from `roxy.procstat.ProcStat`,
  which are read from `/proc`. `GET /upstream` returns the output of
  `Upstream.stats()`. Both answer in JSON. Any other request gets 404.
- `roxy.config`: `Config.load()` reads the YAML file named by the
  `ROXY_CONFIG` environment variable. If that variable is not set, it reads
  `config.yaml`. `Config.from_yaml(text)` parses a YAML string. Errors raise
  `ConfigError`. Durations are stored as integer nanoseconds.
- `roxy.duration`: `parse_duration` and `format_duration` handle durations
  such as `1h2m3s`, `1.5s` and `300ms`. The accepted units are `ns`, `us`
  (or `µs`), `ms`, `s`, `m`, `h`, `d` and `w`. Negative durations raise
  `DurationError`.
- `roxy.timestamp`: `DateTime` renders ISO 8601 UTC timestamps.
- `roxy.log`: `Logger`, `Level` and `init` provide a compact line logger
  that writes to standard output.

## Configuration

```yaml
worker: 4
resolvers:
  - 1.1.1.1:53
log:
  level: info
  timestamp: true
dns:
  listen: 0.0.0.0:53
  cache:
    size: 1024
    ttl: 5m
  upstream:
    nameservers:
      - 8.8.8.8:53
  reject:
    endpoint: https://rules.example.com/reject.txt
    interval: 24h
  hijack:
    endpoint: https://rules.example.com/hijack.txt
    hijack: 192.0.2.1
upstream:
  load_balance: best       # or: etld
  check:
    timeout: 5s
    interval: 10s
  provider:
    endpoint: https://subscription.example.com/servers
    interval: 1h
controller:
  listen: 127.0.0.1:9000
thp:
  listen:
    - 0.0.0.0:8080
```

If `worker` is not set, `Config.worker()` returns the number of CPUs.

Starting the DNS server and the controller from a configuration:

```python
from roxy.config import Config
from roxy.controller import Controller
from roxy.dns import DnsServer
from roxy.servers import Server, Upstream

config = Config.load()
DnsServer(config.dns).serve()          # blocks

upstream = Upstream([Server("192.0.2.10:8388")], config.upstream.load_balance)
Controller(config.controller, upstream).serve()   # blocks
```

## Examples

```python
from roxy.duration import format_duration, parse_duration

parse_duration("1.5s")                        # 1500000000
format_duration(4 * 60 * 10**9 + 5 * 10**9)   # "4m5s"
```

```python
from roxy.trie import Trie

rules = Trie()
rules.insert(".foo.com")
rules.insert("bar.com")
rules.contain("abc.foo.com.")   # True
rules.contain("bb.bar.com.")    # False
```

```python
from roxy.sniffing import http_host

http_host(b"GET / HTTP/1.1\nHost: www.example.com\nAccept: */*\n")
# "www.example.com"
```

```python
from roxy.timestamp import DateTime

str(DateTime.from_timestamp(0, 0))   # "1970-01-01T00:00:00.000000Z"
```

## What it does not do

- There is no command-line program. You start the servers from Python, as
  shown above.
- There is no transparent proxy relay. `roxy.sniffing` finds a connection's
  destination, but nothing in the package accepts connections on the `thp`
  addresses or forwards traffic to an upstream server. The `thp`, `worker` and
  `resolvers` settings are parsed but not used.
- Upstream servers are not health-checked, and the server list is not fetched
  from the `upstream.provider` endpoint. You build the `Server` objects
  yourself. Latencies reach them only through `Server.push_latency` or
  `Server.report_failure`.
- `etld_plus_one` uses a short built-in list of two-label public suffixes, not
  the full public suffix list.