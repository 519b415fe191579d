import enum
import ipaddress
import logging
import re
import socket
from collections import namedtuple
from contextlib import contextmanager

import psutil

from iptools.core.primary_interface import get_primary_interface_provider

FAMILY_TAGS = {
    socket.AF_INET: 'inet',
    socket.AF_INET6: 'inet6',
}


class InterfaceFlags(enum.IntFlag):
    """Interface flags as reported by getifaddrs(3); see <net/if.h>."""

    NONE = 0
    UP = 1 << 0
    BROADCAST = 1 << 1
    LOOPBACK = 1 << 3
    POINTOPOINT = 1 << 4
    RUNNING = 1 << 6
    MULTICAST = 1 << 12

    @classmethod
    def from_names(cls, names):
        """Builds flags from psutil's comma separated string, e.g. 'up,broadcast,running'."""
        flags = cls.NONE
        for name in names.split(','):
            member = cls.__members__.get(name.strip().upper())
            if member is not None:
                flags |= member
        return flags


ACTIVE_MASK = InterfaceFlags.UP | InterfaceFlags.RUNNING | InterfaceFlags.LOOPBACK
ACTIVE_STATE = InterfaceFlags.UP | InterfaceFlags.RUNNING
DECIMAL_COMPONENT = re.compile(r'[+-]?[0-9]+')

InterfaceRecord = namedtuple('InterfaceRecord', ['name', 'flags', 'family', 'raw_address'])
ActiveAddress = namedtuple('ActiveAddress', ['name', 'address', 'family'])


class AddressParseError(ValueError):
    """Raised when a dotted address contains a non-numeric component."""
    pass


def _looks_like_loopback(name):
    lowered = name.lower()
    return lowered == 'lo' or lowered.startswith('lo0') or 'loopback' in lowered


def _flags_for(name, stats):
    """
    Works out the flag bitmask of an interface from its psutil stats.

    Windows reports an empty flags string, so there the state is derived from
    ``isup`` and the loopback adapter is recognised by name.
    """
    if stats is None:
        return InterfaceFlags.NONE
    flag_names = getattr(stats, 'flags', '')
    if flag_names:
        return InterfaceFlags.from_names(flag_names)

    flags = ACTIVE_STATE if stats.isup else InterfaceFlags.NONE
    if _looks_like_loopback(name):
        flags |= InterfaceFlags.LOOPBACK
    return flags


@contextmanager
def open_interface_list():
    """
    Takes a snapshot of every address record on the host.

    Yields:
        list of InterfaceRecord in OS enumeration order. The list is empty if
        the OS call failed. It is released when the block exits, whatever
        the exit path.
    """
    records = []
    try:
        if_stats = psutil.net_if_stats()
        if_addrs = psutil.net_if_addrs()
        for name, addrs in if_addrs.items():
            # alias labels such as eth0:1 have no stats entry of their own
            stats = if_stats.get(name) or if_stats.get(name.split(':', 1)[0])
            flags = _flags_for(name, stats)
            for addr in addrs:
                records.append(InterfaceRecord(name, flags, addr.family, addr.address))
    except (OSError, psutil.Error) as e:
        logging.error(f"Could not enumerate network interfaces: {e}")
        records = []

    try:
        yield records
    finally:
        records.clear()


def resolve_numeric_address(raw_address):
    """
    Converts an address record to its numeric host string.

    The IPv6 scope suffix is kept, the way getnameinfo(3) prints it with
    NI_NUMERICHOST.

    Returns:
        str or None: e.g. '192.168.1.10' or 'fe80::1%en0', None if the
        address cannot be resolved.
    """
    try:
        return str(ipaddress.ip_address(raw_address))
    except (ValueError, TypeError) as e:
        logging.debug(f"Could not resolve address {raw_address!r}: {e}")
        return None


def is_active(record):
    """True for records that are up, running and not loopback, with an IPv4 or IPv6 address."""
    return (record.flags & ACTIVE_MASK) == ACTIVE_STATE and record.family in FAMILY_TAGS


def parse_dotted_address(address_text):
    """
    Splits a dotted address into its integer components.

    No range or length validation is done: '300.1.1.1' gives [300, 1, 1, 1].

    Raises:
        AddressParseError: if any component is not an integer.
    """
    if not address_text:
        return []
    components = address_text.split('.')
    if components[0] == '':
        return []

    for component in components:
        if not DECIMAL_COMPONENT.fullmatch(component):
            raise AddressParseError(f"Invalid address component {component!r} in '{address_text}'")
    return [int(component) for component in components]


class InterfaceCatalog:
    """
    Read-only views over the host's active network interfaces.

    Every query enumerates the interfaces again; nothing is cached since the
    interface state can change between calls.
    """
    def __init__(self, enumerate_interfaces=None, resolve_address=None, primary_provider=None):
        self.enumerate_interfaces = enumerate_interfaces or open_interface_list
        self.resolve_address = resolve_address or resolve_numeric_address
        self.primary_provider = primary_provider

    def active_addresses(self):
        """Yields an ActiveAddress for every qualifying record that resolves."""
        with self.enumerate_interfaces() as records:
            for record in records:
                if not is_active(record):
                    continue
                address = self.resolve_address(record.raw_address)
                if address is not None:
                    yield ActiveAddress(record.name, address, record.family)

    def list_active_addresses(self):
        return [active.address for active in self.active_addresses()]

    def list_active_interface_names(self):
        """One name per qualifying address record, so an interface can appear more than once."""
        with self.enumerate_interfaces() as records:
            return [record.name for record in records if is_active(record)]

    def address_for_interface(self, interface_name):
        """
        Finds the IPv4 address of the named interface (case-insensitive).

        Returns:
            str or None: The first matching address in enumeration order.
        """
        wanted = interface_name.casefold()
        with self.enumerate_interfaces() as records:
            for record in records:
                if not is_active(record) or record.family != socket.AF_INET:
                    continue
                if record.name.casefold() != wanted:
                    continue
                address = self.resolve_address(record.raw_address)
                if address is not None:
                    return address
        return None

    def address_map_by_interface_and_family(self):
        """
        Maps '<name>/inet' and '<name>/inet6' to addresses.

        e.g., {'en0/inet': '192.168.1.100', 'en0/inet6': 'fe80::1%en0'}
        Later records overwrite earlier ones with the same key.
        """
        addresses = {}
        for active in self.active_addresses():
            addresses[f"{active.name}/{FAMILY_TAGS[active.family]}"] = active.address
        return addresses

    def primary_interface_name(self):
        if self.primary_provider is None:
            self.primary_provider = get_primary_interface_provider()
        return self.primary_provider.primary_interface_name(socket.AF_INET)

    def primary_interface_address(self):
        interface_name = self.primary_interface_name()
        if interface_name is None:
            return None
        return self.address_for_interface(interface_name)
