"""Wake-on-LAN magic packet construction and dispatch."""

import asyncio
import logging
import re
import socket
from typing import Tuple


logger = logging.getLogger(__name__)

MAC_PATTERN = re.compile(r'^[0-9A-Fa-f]{2}([:-])(?:[0-9A-Fa-f]{2}\1){4}[0-9A-Fa-f]{2}$')
MAGIC_PACKET_SIZE = 102


class WakeError(Exception):
    """Base class for Wake-on-LAN dispatch failures."""


class InvalidAddress(WakeError):
    """The hardware address could not be parsed."""


class ResolutionError(WakeError):
    """The broadcast address could not be resolved."""


class TransportError(WakeError):
    """The datagram could not be sent."""


def parse_mac_address(mac: str) -> bytes:
    """Parse a colon- or hyphen-separated MAC address string into 6 bytes."""
    if not isinstance(mac, str) or not MAC_PATTERN.match(mac):
        raise InvalidAddress(f"Invalid MAC address: {mac!r}")

    return bytes.fromhex(re.sub(r'[:-]', '', mac))


def create_magic_packet(mac_bytes: bytes) -> bytes:
    """Create the Wake-on-LAN magic packet."""
    # Magic packet format:
    # - 6 bytes of 0xFF
    # - MAC address repeated 16 times
    magic_header = b'\xff' * 6
    mac_repeated = mac_bytes * 16

    return magic_header + mac_repeated


class WoLSender:
    """Sends a single Wake-on-LAN magic packet per call, without retries."""

    async def resolve(self, broadcast_ip: str, port: int) -> Tuple[str, int]:
        """Resolve the broadcast address to an IPv4 UDP destination."""
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(
                broadcast_ip, port,
                family=socket.AF_INET,
                type=socket.SOCK_DGRAM
            )
        except (socket.gaierror, UnicodeError, OverflowError) as e:
            raise ResolutionError(f"Could not resolve {broadcast_ip}:{port}: {e}") from e

        if not infos:
            raise ResolutionError(f"No address found for {broadcast_ip}:{port}")

        return infos[0][4][:2]

    async def send_magic_packet(self, mac_address: str, broadcast_ip: str, port: int) -> None:
        """
        Send one magic packet for ``mac_address`` to ``broadcast_ip:port``.

        Raises:
            InvalidAddress: MAC address is malformed
            ResolutionError: destination could not be resolved
            TransportError: socket could not be opened or the send failed
        """
        mac_bytes = parse_mac_address(mac_address)
        magic_packet = create_magic_packet(mac_bytes)
        destination = await self.resolve(broadcast_ip, port)

        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
                sock.sendto(magic_packet, destination)
        except OSError as e:
            raise TransportError(f"Could not send WoL packet to {destination[0]}:{destination[1]}: {e}") from e

        logger.info(f"Wake-on-LAN packet sent for MAC {mac_address} "
                    f"to {destination[0]}:{destination[1]} ({len(magic_packet)} bytes)")
