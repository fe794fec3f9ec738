"""
Tests for client address resolution.

This module covers:
1. Header priority and parsing
2. Peer address fallback
3. Trust policy (trust-all vs trusted proxy ranges)
4. Request context adapters
5. OpenTelemetry span annotation
"""
from unittest.mock import MagicMock, patch

import pytest
from starlette.requests import Request

from ipcapture.ip_capture import (
    PEER_SOURCE,
    AddressResolver,
    HeaderMapRequestContext,
    ResolvedAddress,
    StarletteRequestContext,
    TrustPolicy,
    add_ip_to_current_span,
)


@pytest.fixture
def resolver() -> AddressResolver:
    return AddressResolver()


def build_starlette_request(headers=None, client=("10.0.0.5", 51000), method="GET", path="/api/v1/items"):
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "root_path": "",
        "scheme": "http",
        "query_string": b"",
        "server": ("testserver", 80),
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


@pytest.mark.unit
class TestHeaderResolution:
    """Test resolution from proxy headers."""

    def test_cdn_header_beats_forwarded_for(self, resolver, make_request):
        request = make_request({
            "CF-Connecting-IP": "198.51.100.10",
            "X-Forwarded-For": "203.0.113.50",
        })
        resolved = resolver.resolve(request)
        assert resolved == ResolvedAddress("198.51.100.10", "CF-Connecting-IP", False)

    def test_forwarded_for_leftmost_public(self, resolver, make_request):
        resolved = resolver.resolve(make_request({"X-Forwarded-For": "10.0.0.1, 203.0.113.50"}))
        assert resolved.ip_address == "203.0.113.50"
        assert resolved.source_header == "X-Forwarded-For"
        assert resolved.is_private is False

    def test_private_chain_falls_back_when_trusting_all(self, resolver, make_request):
        resolved = resolver.resolve(make_request({"X-Forwarded-For": "10.0.0.1, 192.168.1.1"}))
        assert resolved.ip_address == "10.0.0.1"
        assert resolved.is_private is True

    def test_unknown_value_skipped(self, resolver, make_request):
        resolved = resolver.resolve(make_request({
            "X-Real-IP": "unknown",
            "X-Forwarded-For": "203.0.113.50",
        }))
        assert resolved.source_header == "X-Forwarded-For"

    def test_malformed_header_skipped(self, resolver, make_request):
        resolved = resolver.resolve(make_request({
            "CF-Connecting-IP": "not-an-ip",
            "X-Real-IP": "203.0.113.8",
        }))
        assert resolved.ip_address == "203.0.113.8"
        assert resolved.source_header == "X-Real-IP"

    def test_ipv6_header_value(self, resolver, make_request):
        resolved = resolver.resolve(make_request({"True-Client-IP": "2001:db8::1"}))
        assert resolved.ip_address == "2001:db8::1"

    def test_long_loopback_normalized(self, resolver, make_request):
        resolved = resolver.resolve(make_request({"X-Real-IP": "0:0:0:0:0:0:0:1"}))
        assert resolved.ip_address == "::1"
        assert resolved.is_private is True

    def test_forwarded_header(self, resolver, make_request):
        resolved = resolver.resolve(make_request({"Forwarded": 'for="[2001:db8:cafe::17]:4711";proto=https'}))
        assert resolved.ip_address == "2001:db8:cafe::17"
        assert resolved.source_header == "Forwarded"

    def test_header_lookup_is_case_insensitive(self, resolver):
        request = HeaderMapRequestContext({"x-real-ip": "203.0.113.8"}, peer_address="10.0.0.1")
        assert resolver.extract_ip_address(request) == "203.0.113.8"


@pytest.mark.unit
class TestPeerFallback:
    """Test fallback to the transport peer address."""

    def test_no_headers_uses_peer(self, resolver, make_request):
        resolved = resolver.resolve(make_request(peer="203.0.113.99"))
        assert resolved == ResolvedAddress("203.0.113.99", PEER_SOURCE, False)
        assert resolved.from_peer is True

    def test_unusable_headers_use_peer(self, resolver, make_request):
        resolved = resolver.resolve(make_request({"X-Forwarded-For": "garbage"}, peer="10.0.0.99"))
        assert resolved.ip_address == "10.0.0.99"
        assert resolved.is_private is True

    def test_peer_is_normalized(self, resolver, make_request):
        assert resolver.extract_ip_address(make_request(peer=" 0:0:0:0:0:0:0:1 ")) == "::1"

    @pytest.mark.parametrize("peer", [None, "", "testclient"])
    def test_nothing_usable(self, resolver, make_request, peer):
        assert resolver.resolve(make_request({"X-Real-IP": "unknown"}, peer=peer)) is None

    def test_none_request(self, resolver):
        assert resolver.resolve(None) is None
        assert resolver.extract_ip_address(None) is None


@pytest.mark.unit
class TestTrustPolicy:
    """Test proxy trust decisions."""

    def test_default_trusts_all(self):
        policy = TrustPolicy()
        assert policy.trusts_peer("198.51.100.1")
        assert policy.allows_private_fallback

    def test_empty_ranges_still_read_headers(self, make_request):
        resolver = AddressResolver(TrustPolicy(trust_all_proxies=False))
        resolved = resolver.resolve(make_request({"X-Real-IP": "203.0.113.8"}, peer="198.51.100.1"))
        assert resolved.source_header == "X-Real-IP"

    def test_private_fallback_disabled_without_trust_all(self, make_request):
        resolver = AddressResolver(TrustPolicy(trust_all_proxies=False))
        resolved = resolver.resolve(make_request({"X-Forwarded-For": "10.0.0.1, 192.168.1.1"}, peer="10.0.0.99"))
        assert resolved.ip_address == "10.0.0.99"
        assert resolved.from_peer

    def test_trusted_peer_headers_honoured(self, make_request):
        resolver = AddressResolver(TrustPolicy.from_strings(False, ["10.0.0.0/8"]))
        resolved = resolver.resolve(make_request({"CF-Connecting-IP": "203.0.113.7"}, peer="10.1.2.3"))
        assert resolved.ip_address == "203.0.113.7"

    def test_untrusted_peer_headers_ignored(self, make_request):
        resolver = AddressResolver(TrustPolicy.from_strings(False, ["10.0.0.0/8"]))
        resolved = resolver.resolve(make_request({"CF-Connecting-IP": "203.0.113.7"}, peer="198.51.100.1"))
        assert resolved == ResolvedAddress("198.51.100.1", PEER_SOURCE, False)

    def test_invalid_peer_never_trusted(self):
        policy = TrustPolicy.from_strings(False, ["10.0.0.0/8"])
        assert not policy.trusts_peer(None)
        assert not policy.trusts_peer("testclient")

    def test_from_strings_skips_blank_entries(self):
        policy = TrustPolicy.from_strings(False, ["10.0.0.0/8", " ", ""])
        assert len(policy.trusted_proxy_ranges) == 1

    def test_from_strings_rejects_invalid_range(self):
        with pytest.raises(ValueError):
            TrustPolicy.from_strings(False, ["10.0.0.0/99"])


@pytest.mark.unit
class TestResolutionAcrossTrustPolicies:
    """Test header resolution end to end under both trust modes."""

    @pytest.mark.parametrize("trust_all", [True, False])
    def test_leftmost_public_forwarded_for(self, trust_all, make_request):
        resolver = AddressResolver(TrustPolicy(trust_all_proxies=trust_all))
        resolved = resolver.resolve(make_request({"X-Forwarded-For": "10.0.0.1, 192.168.1.1, 203.0.113.50"}))
        assert resolved == ResolvedAddress("203.0.113.50", "X-Forwarded-For", False)

    @pytest.mark.parametrize("header,value", [
        ("X-Forwarded-For", "0:0:0:0:0:0:0:1"),
        ("X-Forwarded-For", "[0:0:0:0:0:0:0:1]:8080, 10.0.0.1"),
        ("Forwarded", "for=0:0:0:0:0:0:0:1"),
        ("Forwarded", 'for="[0:0:0:0:0:0:0:1]:4711";proto=https'),
    ])
    def test_long_loopback_normalized_in_chains(self, resolver, make_request, header, value):
        resolved = resolver.resolve(make_request({header: value}, peer="203.0.113.99"))
        assert resolved == ResolvedAddress("::1", header, True)

    @pytest.mark.parametrize("trust_all", [True, False])
    def test_quoted_forwarded_for(self, trust_all, make_request):
        resolver = AddressResolver(TrustPolicy(trust_all_proxies=trust_all))
        resolved = resolver.resolve(make_request({"Forwarded": 'for="192.0.2.60";proto=http;by=203.0.113.43'}))
        assert resolved == ResolvedAddress("192.0.2.60", "Forwarded", False)

    @pytest.mark.parametrize("lower_header,value", [
        ("X-Client-IP", "198.51.100.23"),
        ("X-Cluster-Client-IP", "198.51.100.23"),
        ("Forwarded", "for=198.51.100.23"),
    ])
    def test_private_chain_falls_through_to_lower_priority_header(self, make_request, lower_header, value):
        resolver = AddressResolver(TrustPolicy(trust_all_proxies=False))
        resolved = resolver.resolve(make_request(
            {"X-Forwarded-For": "10.0.0.1, 192.168.1.1", lower_header: value},
            peer="10.0.0.99",
        ))
        assert resolved == ResolvedAddress("198.51.100.23", lower_header, False)


@pytest.mark.unit
class TestStarletteRequestContext:
    """Test the Starlette request adapter."""

    def test_reads_request(self):
        request = build_starlette_request({"X-Real-IP": "203.0.113.8"}, method="POST", path="/api/v1/login")
        context = StarletteRequestContext(request)
        assert context.get_header("x-real-ip") == "203.0.113.8"
        assert context.get_header("X-Missing") is None
        assert context.peer_address == "10.0.0.5"
        assert context.request_path == "/api/v1/login"
        assert context.http_method == "POST"

    def test_missing_client(self):
        context = StarletteRequestContext(build_starlette_request(client=None))
        assert context.peer_address is None

    def test_resolves_through_adapter(self, resolver):
        context = StarletteRequestContext(build_starlette_request({"X-Forwarded-For": "203.0.113.50, 10.0.0.1"}))
        assert resolver.extract_ip_address(context) == "203.0.113.50"


@pytest.mark.unit
class TestSpanAnnotation:
    """Test OpenTelemetry span attributes."""

    def test_sets_span_attributes(self):
        span = MagicMock()
        span.is_recording.return_value = True
        with patch("ipcapture.ip_capture.trace.get_current_span", return_value=span):
            add_ip_to_current_span(ResolvedAddress("203.0.113.7", "X-Real-IP", False))

        span.set_attribute.assert_any_call("client.ip", "203.0.113.7")
        span.set_attribute.assert_any_call("http.client_ip", "203.0.113.7")
        span.set_attribute.assert_any_call("client.ip.source", "X-Real-IP")

    def test_non_recording_span_untouched(self):
        span = MagicMock()
        span.is_recording.return_value = False
        with patch("ipcapture.ip_capture.trace.get_current_span", return_value=span):
            add_ip_to_current_span(ResolvedAddress("203.0.113.7", "X-Real-IP", False))
        span.set_attribute.assert_not_called()

    def test_none_is_ignored(self):
        with patch("ipcapture.ip_capture.trace.get_current_span") as get_span:
            add_ip_to_current_span(None)
        get_span.assert_not_called()

    def test_span_errors_swallowed(self):
        with patch("ipcapture.ip_capture.trace.get_current_span", side_effect=RuntimeError("boom")):
            add_ip_to_current_span(ResolvedAddress("203.0.113.7", "X-Real-IP", False))
