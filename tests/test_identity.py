"""Tests for client address resolution behind proxies."""

import pytest

from backend.identity import client_ip


@pytest.mark.parametrize("peer, real_ip, forwarded, expected", [
    # direct public peer: headers ignored
    ("8.8.8.8", "1.2.3.4", "5.6.7.8", "8.8.8.8"),
    # local proxy: X-Real-IP first
    ("127.0.0.1", "198.51.100.7", "5.6.7.8", "198.51.100.7"),
    # private proxy: first X-Forwarded-For entry, port stripped
    ("10.0.0.2", None, "198.51.100.7:5123, 10.0.0.9", "198.51.100.7"),
    # bracketed IPv6 with port
    ("::1", "[2001:db8::1]:443", None, "2001:db8::1"),
    # garbage headers fall back to the peer
    ("127.0.0.1", "not-an-ip", None, "127.0.0.1"),
    ("192.168.1.4", None, None, "192.168.1.4"),
])
def test_client_ip(peer, real_ip, forwarded, expected):
    assert client_ip(peer, real_ip, forwarded) == expected


def test_unknown_peer_uses_headers():
    assert client_ip("testclient", "10.1.1.1") == "10.1.1.1"


def test_unknown_peer_without_headers():
    assert client_ip(None) == "unknown"
    assert client_ip("testclient") == "testclient"
