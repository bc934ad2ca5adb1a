#!/usr/bin/env python3
"""Tests for Wake-on-LAN packet construction and dispatch."""

import asyncio
import unittest
import socket
import sys
import os
from unittest import mock

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from wolproxy.wol_sender import (
    WoLSender,
    InvalidAddress,
    ResolutionError,
    TransportError,
    create_magic_packet,
    parse_mac_address,
)


class TestMacParsing(unittest.TestCase):
    """Test MAC address parsing."""

    def test_separators(self):
        expected = b'\x00\x1b\x44\x11\x3a\xb7'
        for mac in ['00:1B:44:11:3A:B7', '00-1b-44-11-3a-b7']:
            with self.subTest(mac=mac):
                self.assertEqual(parse_mac_address(mac), expected)

    def test_invalid(self):
        for mac in ['invalid', '00:1B:44:11:3A', '001B44113AB7',
                    'GG:HH:II:JJ:KK:LL', '00:1B-44:11:3A:B7', '', None]:
            with self.subTest(mac=mac):
                with self.assertRaises(InvalidAddress):
                    parse_mac_address(mac)


class TestMagicPacket(unittest.TestCase):
    """Test magic packet creation."""

    def test_layout(self):
        packet = create_magic_packet(parse_mac_address('AA:AA:BB:BB:CC:CC'))

        # Magic packet should be 102 bytes (6 + 16*6)
        self.assertEqual(len(packet), 102)
        self.assertEqual(packet[:6], b'\xff' * 6)
        for offset in range(6, 102, 6):
            self.assertEqual(packet[offset:offset + 6], b'\xaa\xaa\xbb\xbb\xcc\xcc')


class TestWoLSender(unittest.IsolatedAsyncioTestCase):
    """Test sending a magic packet over UDP."""

    def setUp(self):
        """Set up test fixtures."""
        self.receiver = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.receiver.bind(('127.0.0.1', 0))
        self.receiver.settimeout(2)
        self.port = self.receiver.getsockname()[1]
        self.sender = WoLSender()

    def tearDown(self):
        self.receiver.close()

    async def test_sends_single_datagram(self):
        await self.sender.send_magic_packet('AA:AA:BB:BB:CC:CC', '127.0.0.1', self.port)

        data, _ = self.receiver.recvfrom(1024)
        self.assertEqual(data, b'\xff' * 6 + b'\xaa\xaa\xbb\xbb\xcc\xcc' * 16)

        # Exactly one datagram
        self.receiver.settimeout(0.2)
        with self.assertRaises(socket.timeout):
            self.receiver.recvfrom(1024)

    async def test_invalid_mac_sends_nothing(self):
        with self.assertRaises(InvalidAddress):
            await self.sender.send_magic_packet('not-a-mac', '127.0.0.1', self.port)

        self.receiver.settimeout(0.2)
        with self.assertRaises(socket.timeout):
            self.receiver.recvfrom(1024)

    async def test_resolution_error(self):
        loop = asyncio.get_running_loop()
        error = socket.gaierror(socket.EAI_NONAME, 'Name or service not known')
        with mock.patch.object(loop, 'getaddrinfo', side_effect=error):
            with self.assertRaises(ResolutionError):
                await self.sender.send_magic_packet('AA:AA:BB:BB:CC:CC', 'no-such-host.invalid', 9)

    async def test_transport_error(self):
        with mock.patch('socket.socket.sendto', side_effect=OSError('Network is unreachable')):
            with self.assertRaises(TransportError):
                await self.sender.send_magic_packet('AA:AA:BB:BB:CC:CC', '127.0.0.1', self.port)


if __name__ == '__main__':
    unittest.main()
