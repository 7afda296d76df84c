from __future__ import annotations

from enum import Enum
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network, ip_address
from typing import List, Optional, Union

from attrs import define, field

Network = Union[IPv4Network, IPv6Network]


@define(frozen=True)
class KeyValue:
    key_name: str
    value: str


@define(frozen=True)
class PortRange:
    from_port: int = 0
    to_port: int = 0
    any: bool = False

    def contains(self, port: int) -> bool:
        return self.any or self.from_port <= port <= self.to_port


@define(frozen=True)
class FirewallRule:
    protocol: str
    port_range: PortRange
    ip_ranges: List[Network] = field(factory=list)
    sources: List[str] = field(factory=list)

    def contains(self, ip: str) -> bool:
        address: Union[IPv4Address, IPv6Address] = ip_address(ip)
        return any(address.version == net.version and address in net for net in self.ip_ranges)

    def __str__(self) -> str:
        ports = "any" if self.port_range.any else f"{self.port_range.from_port}-{self.port_range.to_port}"
        sources = ",".join([str(r) for r in self.ip_ranges] + self.sources)
        return f"{self.protocol}:{ports}({sources})"


class RouteTargetType(Enum):
    EgressOnlyInternetGateway = 1
    Gateway = 2
    Instance = 3
    Nat = 4
    NetworkInterface = 5
    VpcPeeringConnection = 6


@define(frozen=True)
class RouteTarget:
    type: RouteTargetType
    ref: str
    owner: Optional[str] = None


@define(frozen=True)
class Route:
    destination: Optional[IPv4Network] = None
    destination_ipv6: Optional[IPv6Network] = None
    destination_prefix_list_id: Optional[str] = None
    targets: List[RouteTarget] = field(factory=list)


@define(frozen=True)
class Grantee:
    grantee_id: str = ""
    grantee_display_name: str = ""
    grantee_type: str = ""


@define(frozen=True)
class Grant:
    permission: str
    grantee: Grantee


@define(frozen=True)
class DistributionOrigin:
    id: str = ""
    public_dns: str = ""
    path_prefix: str = ""
    origin_type: str = ""
    config: str = ""
