from unittest.mock import MagicMock, patch

import pytest
from pyroute2.netlink.exceptions import NetlinkError

from localroute.errors import NoAddressFound
from localroute.hostaddr import HostAddressProvider, list_ipv4_interfaces

INTERFACES = [
    ("docker0", []),
    ("eth0", ["127.0.0.5", "203.0.113.7", "203.0.113.8"]),
    ("eth1", ["10.0.0.2"]),
]


def provider(**kwargs):
    return HostAddressProvider(enumerate_interfaces=lambda: INTERFACES, **kwargs)


def test_override_is_used_verbatim():
    p = HostAddressProvider(override=["10.0.0.2", "10.0.0.3"],
                            enumerate_interfaces=MagicMock(side_effect=AssertionError))
    assert p.resolve() == {"10.0.0.2", "10.0.0.3"}


def test_auto_selects_first_interface_with_usable_address():
    assert provider().resolve() == {"203.0.113.7", "203.0.113.8"}


def test_named_interface():
    assert provider(interface="eth1").resolve() == {"10.0.0.2"}


def test_named_interface_without_address():
    with pytest.raises(NoAddressFound) as excinfo:
        provider(interface="docker0").resolve()
    assert "docker0" in str(excinfo.value)
    assert excinfo.value.exit_code == 3


def test_unknown_interface():
    with pytest.raises(NoAddressFound):
        provider(interface="wg0").resolve()


def test_only_loopback_addresses():
    p = HostAddressProvider(enumerate_interfaces=lambda: [("dummy0", ["127.0.0.2"])])
    with pytest.raises(NoAddressFound):
        p.resolve()


def test_netlink_error_is_no_address_found():
    p = HostAddressProvider(enumerate_interfaces=MagicMock(side_effect=NetlinkError(1, "denied")))
    with pytest.raises(NoAddressFound):
        p.resolve()


def nlmsg(fields, attrs):
    msg = MagicMock()
    msg.__getitem__.side_effect = fields.__getitem__
    msg.get_attr.side_effect = attrs.get
    return msg


@patch("localroute.hostaddr.IPRoute")
def test_list_ipv4_interfaces_skips_loopback_links(mock_iproute):
    ipr = mock_iproute.return_value.__enter__.return_value
    ipr.get_links.return_value = [
        nlmsg({"index": 1, "flags": 0x49}, {"IFLA_IFNAME": "lo"}),
        nlmsg({"index": 2, "flags": 0x1003}, {"IFLA_IFNAME": "eth0"}),
        nlmsg({"index": 3, "flags": 0x1003}, {"IFLA_IFNAME": "eth1"}),
    ]
    ipr.get_addr.return_value = [
        nlmsg({"index": 1}, {"IFA_LOCAL": "127.0.0.1"}),
        nlmsg({"index": 2}, {"IFA_LOCAL": "203.0.113.7"}),
        nlmsg({"index": 2}, {"IFA_ADDRESS": "203.0.113.8"}),
    ]
    assert list_ipv4_interfaces() == [("eth0", ["203.0.113.7", "203.0.113.8"]), ("eth1", [])]
