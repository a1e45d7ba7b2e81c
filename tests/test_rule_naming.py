import pytest

from range_sync.models import IpVersion, Protocol
from range_sync.rule_naming import HASH_SUFFIX_LENGTH, name_head, range_hash, rule_name, sanitize_range


class TestRuleName:
    def test_default_prefix_ipv6_udp(self):
        name = rule_name("Zscaler-AutoManaged", "IPv6", "UDP", 443, "2a03:f80::/29")
        assert name == "Zscaler-AutoManaged-IPv6-UDP-443-2a03-f80--29"

    def test_enum_arguments_match_string_arguments(self):
        assert rule_name("P", IpVersion.V4, Protocol.TCP, 443, "1.2.3.0/24") == rule_name(
            "P", "IPv4", "TCP", 443, "1.2.3.0/24"
        )
        assert rule_name("P", IpVersion.V4, Protocol.TCP, 443, "1.2.3.0/24") == "P-IPv4-TCP-443-1.2.3.0-24"

    def test_deterministic(self):
        args = ("Zscaler-AutoManaged", "IPv4", "TCP", 443, "185.46.212.0/22")
        assert rule_name(*args) == rule_name(*args)

    @pytest.mark.parametrize(
        "changed",
        [
            ("Other", "IPv4", "TCP", 443, "185.46.212.0/22"),
            ("Zscaler-AutoManaged", "IPv6", "TCP", 443, "185.46.212.0/22"),
            ("Zscaler-AutoManaged", "IPv4", "UDP", 443, "185.46.212.0/22"),
            ("Zscaler-AutoManaged", "IPv4", "TCP", 80, "185.46.212.0/22"),
            ("Zscaler-AutoManaged", "IPv4", "TCP", 443, "185.46.213.0/22"),
        ],
    )
    def test_any_argument_change_changes_name(self, changed):
        base = rule_name("Zscaler-AutoManaged", "IPv4", "TCP", 443, "185.46.212.0/22")
        assert rule_name(*changed) != base

    def test_long_name_falls_back_to_hash(self):
        cidr = "2001:0db8:0000:0000:0000:ff00:0042:8329/128"
        name = rule_name("A" * 70, "IPv6", "TCP", 443, cidr)
        assert name == f"{'A' * 70}-IPv6-TCP-443-{range_hash(cidr)}"
        assert len(name) <= 100

    def test_hash_fallback_is_stable(self):
        cidr = "2001:0db8:0000:0000:0000:ff00:0042:8329/128"
        assert rule_name("B" * 80, "IPv6", "UDP", 443, cidr) == rule_name("B" * 80, "IPv6", "UDP", 443, cidr)

    @pytest.mark.parametrize("prefix_len", [1, 50, 90, 99, 150, 500])
    def test_never_exceeds_max_length(self, prefix_len):
        cidr = "2001:0db8:0000:0000:0000:ff00:0042:8329/128"
        for max_length in (20, 64, 100):
            assert len(rule_name("p" * prefix_len, "IPv6", "TCP", 443, cidr, max_length=max_length)) <= max_length

    def test_tiny_max_length_rejected(self):
        with pytest.raises(ValueError):
            rule_name("p", "IPv4", "TCP", 443, "1.2.3.0/24", max_length=9)


    @pytest.mark.parametrize("cidr", ["2a03:f80::/29", "2a03:f80::/32", "2605:4300:1211::/48"])
    def test_trailing_elision_reads_as_double_dash(self, cidr):
        name = rule_name("Zscaler-AutoManaged", "IPv6", "TCP", 443, cidr)
        assert "---" not in name
        assert name.startswith("Zscaler-AutoManaged-IPv6-TCP-443-")

    @pytest.mark.parametrize("cidr", ["2001:db8::1/28", "2001:db8::1:28", "::/0", "::1"])
    def test_inner_or_leading_elision_uses_hash(self, cidr):
        assert rule_name("P", "IPv6", "TCP", 443, cidr) == f"P-IPv6-TCP-443-{range_hash(cidr)}"

    def test_cidr_and_bare_address_do_not_collide(self):
        assert rule_name("P", "IPv6", "TCP", 443, "2001:db8::1/28") != rule_name("P", "IPv6", "TCP", 443, "2001:db8::1:28")

    def test_readable_names_are_distinct(self):
        cidrs = ["2a03:f80::/29", "2a03:f80:0::/29", "2a03:f80:0:0::/29", "2a03:f80::1/128", "2a03::f80/128"]
        names = {rule_name("P", "IPv6", "TCP", 443, c) for c in cidrs}
        assert len(names) == len(cidrs)

    @pytest.mark.parametrize("extra", [0, -5])
    def test_tcp_and_udp_differ_at_short_lengths(self, extra):
        cidr = "2001:0db8:0000:0000:0000:ff00:0042:8329/128"
        max_length = len(name_head("Zscaler-AutoManaged", "IPv6", "UDP", 443)) + HASH_SUFFIX_LENGTH + extra
        tcp = rule_name("Zscaler-AutoManaged", "IPv6", "TCP", 443, cidr, max_length=max_length)
        udp = rule_name("Zscaler-AutoManaged", "IPv6", "UDP", 443, cidr, max_length=max_length)
        assert tcp != udp
        assert len(tcp) <= max_length and len(udp) <= max_length

    def test_truncated_head_names_differ_by_protocol(self):
        cidr = "1.2.3.0/24"
        names = {rule_name("p" * 40, "IPv4", proto, 443, cidr, max_length=20) for proto in ("TCP", "UDP")}
        assert len(names) == 2


class TestHelpers:
    def test_sanitize(self):
        assert sanitize_range("2a03:f80::/29") == "2a03-f80--29"
        assert sanitize_range("185.46.212.0/22") == "185.46.212.0-22"

    def test_hash_is_eight_hex_chars(self):
        h = range_hash("185.46.212.0/22")
        assert len(h) == 8
        int(h, 16)
