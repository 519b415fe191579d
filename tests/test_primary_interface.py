#!/usr/bin/env python3
"""
Tests for the primary interface providers
=========================================

Covers executable discovery, parsing of iproute2 and scutil output, and the
failure paths that disable a provider.
"""

import os
import socket
import subprocess
import sys
from unittest.mock import patch

import pytest

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from iptools.core.primary_interface import (
    CommandProvider, DynamicStoreProvider, RoutingTableProvider, StaticProvider,
    get_primary_interface_provider,
)

IP_ROUTE_OUTPUT = (
    '[{"dst":"default","gateway":"192.168.1.1","dev":"wlp2s0","protocol":"dhcp","metric":600,"flags":[]},'
    '{"dst":"default","gateway":"10.8.0.1","dev":"tun0","metric":700,"flags":[]}]'
)

SCUTIL_OUTPUT = """<dictionary> {
  PrimaryInterface : en0
  PrimaryService : 2C7C2B4E-6F8A-4D7B-9B0E-0E4F0C1F6B2A
  Router : 192.168.1.1
}
"""


def completed(stdout):
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr='')


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ('IPTOOLS_PRIMARY_INTERFACE', 'IPTOOLS_IP_PATH', 'IPTOOLS_SCUTIL_PATH', 'IPTOOLS_COMMAND_TIMEOUT'):
        monkeypatch.delenv(name, raising=False)


class TestStaticProvider:
    """Test suite for StaticProvider"""

    def test_returns_configured_name(self):
        provider = StaticProvider('eth0')
        assert provider.primary_interface_name() == 'eth0'
        assert provider.primary_interface_name(socket.AF_INET6) == 'eth0'

    def test_returns_none_by_default(self):
        assert StaticProvider().primary_interface_name() is None


class TestRoutingTableProvider:
    """Test suite for RoutingTableProvider"""

    @pytest.fixture
    def provider(self):
        return RoutingTableProvider(cli_path='/sbin/ip', timeout=2)

    @patch('subprocess.run')
    def test_first_default_route_device(self, mock_run, provider):
        mock_run.return_value = completed(IP_ROUTE_OUTPUT)

        assert provider.primary_interface_name() == 'wlp2s0'
        args, kwargs = mock_run.call_args
        assert args[0] == ['/sbin/ip', '-j', '-4', 'route', 'show', 'default']
        assert kwargs['timeout'] == 2
        assert kwargs['check'] is True

    @patch('subprocess.run')
    def test_ipv6_lookup(self, mock_run, provider):
        mock_run.return_value = completed('[{"dst":"default","gateway":"fe80::1","dev":"eth1"}]')

        assert provider.primary_interface_name(socket.AF_INET6) == 'eth1'
        assert mock_run.call_args[0][0][2] == '-6'

    @patch('subprocess.run')
    def test_no_default_route(self, mock_run, provider):
        mock_run.return_value = completed('[]')
        assert provider.primary_interface_name() is None

    @patch('subprocess.run')
    def test_unparsable_output(self, mock_run, provider):
        mock_run.return_value = completed('default via 192.168.1.1 dev eth0')
        assert provider.primary_interface_name() is None

    @patch('subprocess.run')
    def test_command_failure_disables_provider(self, mock_run, provider):
        mock_run.side_effect = subprocess.CalledProcessError(1, ['/sbin/ip'])

        assert provider.primary_interface_name() is None
        assert provider.is_available is False
        assert provider.primary_interface_name() is None
        assert mock_run.call_count == 1

    @patch('subprocess.run')
    def test_timeout_keeps_provider_enabled(self, mock_run, provider):
        mock_run.side_effect = subprocess.TimeoutExpired(['/sbin/ip'], 2)

        assert provider.primary_interface_name() is None
        assert provider.is_available is True

    @patch('shutil.which', return_value=None)
    def test_missing_executable(self, mock_which):
        provider = RoutingTableProvider()
        assert provider.is_available is False
        assert provider.primary_interface_name() is None
        mock_which.assert_called_once_with('ip')

    @patch('shutil.which', return_value='/usr/sbin/ip')
    def test_environment_path_wins(self, mock_which, monkeypatch, tmp_path):
        ip_path = tmp_path / 'ip'
        ip_path.write_text('')
        monkeypatch.setenv('IPTOOLS_IP_PATH', str(ip_path))

        provider = RoutingTableProvider()
        assert provider.cli_path == str(ip_path)
        mock_which.assert_not_called()

    def test_timeout_from_environment(self, monkeypatch):
        monkeypatch.setenv('IPTOOLS_COMMAND_TIMEOUT', '0.5')
        assert RoutingTableProvider(cli_path='/sbin/ip').timeout == 0.5

    def test_invalid_timeout_uses_default(self, monkeypatch):
        monkeypatch.setenv('IPTOOLS_COMMAND_TIMEOUT', 'soon')
        assert RoutingTableProvider(cli_path='/sbin/ip').timeout == 5.0


class TestDynamicStoreProvider:
    """Test suite for DynamicStoreProvider"""

    @pytest.fixture
    def provider(self):
        return DynamicStoreProvider(cli_path='/usr/sbin/scutil')

    @patch('subprocess.run')
    def test_primary_interface_from_store(self, mock_run, provider):
        mock_run.return_value = completed(SCUTIL_OUTPUT)

        assert provider.primary_interface_name() == 'en0'
        args, kwargs = mock_run.call_args
        assert args[0] == ['/usr/sbin/scutil']
        assert kwargs['input'] == 'show State:/Network/Global/IPv4\n'

    @patch('subprocess.run')
    def test_ipv6_store_key(self, mock_run, provider):
        mock_run.return_value = completed(SCUTIL_OUTPUT)

        provider.primary_interface_name(socket.AF_INET6)
        assert mock_run.call_args[1]['input'] == 'show State:/Network/Global/IPv6\n'

    @patch('subprocess.run')
    def test_no_such_key(self, mock_run, provider):
        mock_run.return_value = completed('  No such key\n')
        assert provider.primary_interface_name() is None


class TestGetPrimaryInterfaceProvider:
    """Test suite for get_primary_interface_provider"""

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv('IPTOOLS_PRIMARY_INTERFACE', 'bond0')
        provider = get_primary_interface_provider('linux')
        assert isinstance(provider, StaticProvider)
        assert provider.primary_interface_name() == 'bond0'

    @patch('shutil.which', return_value='/usr/sbin/ip')
    def test_linux(self, mock_which):
        assert isinstance(get_primary_interface_provider('linux'), RoutingTableProvider)

    @patch('shutil.which', return_value='/usr/sbin/scutil')
    def test_darwin(self, mock_which):
        assert isinstance(get_primary_interface_provider('darwin'), DynamicStoreProvider)

    def test_unsupported_platform(self):
        provider = get_primary_interface_provider('win32')
        assert isinstance(provider, StaticProvider)
        assert provider.primary_interface_name() is None


class TestCommandProvider:
    """Test suite for the CommandProvider base"""

    def test_base_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            CommandProvider(cli_path='/bin/true')

    def test_subclass_must_implement_lookup(self):
        class NoLookupProvider(CommandProvider):
            executable = 'true'

        with pytest.raises(TypeError):
            NoLookupProvider(cli_path='/bin/true')
