import pytest

from roxy.hashing import fnv, jumphash


def test_fnv_empty_is_zero():
    assert fnv(b"") == 0


def test_fnv_single_one_byte_is_prime():
    assert fnv(b"\x01") == 0x100000001B3


def test_fnv_str_and_bytes_agree():
    assert fnv("example.com") == fnv(b"example.com")


@pytest.mark.parametrize("data", [b"a", b"google.com", b"x" * 1000, bytes(range(256))])
def test_fnv_fits_in_64_bits(data):
    value = fnv(data)
    assert 0 <= value < 2**64


def test_fnv_is_deterministic_and_distinguishes_inputs():
    assert fnv(b"foo.com") == fnv(b"foo.com")
    assert len({fnv(f"host{i}.com") for i in range(200)}) == 200


@pytest.mark.parametrize("buckets", [0, -3])
def test_jumphash_no_buckets(buckets):
    assert jumphash(12345, buckets) == -1


def test_jumphash_single_bucket():
    assert all(jumphash(fnv(f"k{i}"), 1) == 0 for i in range(50))


@pytest.mark.parametrize("buckets", [2, 5, 10, 97])
def test_jumphash_in_range(buckets):
    for i in range(300):
        index = jumphash(fnv(f"key-{i}"), buckets)
        assert 0 <= index < buckets


def test_jumphash_consistency_when_growing():
    for i in range(300):
        key = fnv(f"domain{i}.org")
        for n in range(1, 30):
            before = jumphash(key, n)
            after = jumphash(key, n + 1)
            assert after == before or after == n


def test_jumphash_spreads_keys():
    hits = {jumphash(fnv(f"site{i}.net"), 10) for i in range(1000)}
    assert hits == set(range(10))


def test_jumphash_accepts_full_width_keys():
    index = jumphash(2**64 - 1, 8)
    assert 0 <= index < 8
    assert jumphash(2**64, 8) == jumphash(0, 8)