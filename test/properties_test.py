from ipaddress import ip_network

from cloudgraph.json import to_json
from cloudgraph.properties import (
    DistributionOrigin,
    FirewallRule,
    Grant,
    Grantee,
    KeyValue,
    PortRange,
    Route,
    RouteTarget,
    RouteTargetType,
)


def test_port_range() -> None:
    assert PortRange(22, 22).contains(22)
    assert not PortRange(22, 22).contains(23)
    assert PortRange(1000, 2000).contains(1500)
    assert PortRange(any=True).contains(65535)


def test_firewall_rule_contains() -> None:
    rule = FirewallRule("tcp", PortRange(22, 22), [ip_network("10.0.0.0/24"), ip_network("2001:db8::/110")])
    assert rule.contains("10.0.0.12")
    assert not rule.contains("10.0.1.12")
    assert rule.contains("2001:db8::1")
    assert not rule.contains("2001:db9::1")
    assert str(rule) == "tcp:22-22(10.0.0.0/24,2001:db8::/110)"
    assert str(FirewallRule("any", PortRange(any=True), sources=["sg-1"])) == "any:any(sg-1)"


def test_json() -> None:
    rule = FirewallRule("udp", PortRange(53, 53), [ip_network("1.2.3.4/32")], ["sg-1"])
    assert to_json(rule) == {
        "protocol": "udp",
        "port_range": {"from_port": 53, "to_port": 53, "any": False},
        "ip_ranges": ["1.2.3.4/32"],
        "sources": ["sg-1"],
    }
    route = Route(ip_network("0.0.0.0/0"), targets=[RouteTarget(RouteTargetType.Gateway, "igw-1")])
    assert to_json(route, strip_nulls=True) == {
        "destination": "0.0.0.0/0",
        "targets": [{"type": "Gateway", "ref": "igw-1"}],
    }
    grant = Grant("READ", Grantee("usr_1", "me", "CanonicalUser"))
    assert to_json(grant) == {
        "permission": "READ",
        "grantee": {"grantee_id": "usr_1", "grantee_display_name": "me", "grantee_type": "CanonicalUser"},
    }
    assert to_json([KeyValue("a", "b")]) == [{"key_name": "a", "value": "b"}]
    assert to_json(DistributionOrigin(id="o1"))["id"] == "o1"  # type: ignore


def test_value_equality() -> None:
    assert KeyValue("a", "b") == KeyValue("a", "b")
    assert PortRange(1, 2) != PortRange(1, 3)
    assert len({Grantee("1", "a", "t"), Grantee("1", "a", "t")}) == 1
