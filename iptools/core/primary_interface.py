import abc
import json
import logging
import os
import re
import shutil
import socket
import subprocess
import sys

DEFAULT_COMMAND_TIMEOUT = 5.0


def _command_timeout():
    try:
        return float(os.getenv('IPTOOLS_COMMAND_TIMEOUT', DEFAULT_COMMAND_TIMEOUT))
    except ValueError:
        logging.warning("IPTOOLS_COMMAND_TIMEOUT is not a number. Using the default timeout.")
        return DEFAULT_COMMAND_TIMEOUT


class StaticProvider:
    """Reports a fixed primary interface name, or none at all."""

    def __init__(self, interface_name=None):
        self.interface_name = interface_name

    def primary_interface_name(self, family=socket.AF_INET):
        return self.interface_name


class CommandProvider(abc.ABC):
    """
    Base for providers that ask a system utility for the primary interface.

    The executable is located automatically; if it cannot be found, or fails
    once, the provider is disabled and reports no primary interface.
    """
    executable = None
    env_var = None

    def __init__(self, cli_path=None, timeout=None):
        self.cli_path = cli_path or self._find_cli()
        self.timeout = timeout if timeout is not None else _command_timeout()
        self.is_available = self.cli_path is not None

        if self.is_available:
            logging.info(f"{type(self).__name__} using executable at: {self.cli_path}")
        else:
            logging.warning(f"Could not find {self.executable}. Primary interface lookup is disabled.")

    def _find_cli(self):
        """
        Tries to find the absolute path to the executable.
        1. Checks the provider's environment variable.
        2. Uses shutil.which to search the system's PATH.
        """
        env_path = os.environ.get(self.env_var) if self.env_var else None
        if env_path and os.path.exists(env_path):
            logging.info(f"Found {self.executable} via {self.env_var}: {env_path}")
            return env_path

        return shutil.which(self.executable)

    def _run_command(self, *args, stdin=None):
        """Runs the executable and returns its standard output, or None on failure."""
        if not self.is_available:
            return None

        command = [self.cli_path] + list(args)
        try:
            result = subprocess.run(
                command,
                input=stdin,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
            return result.stdout
        except subprocess.TimeoutExpired:
            logging.warning(f"Command {command} timed out after {self.timeout} seconds")
            return None
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            logging.error(f"Error executing command with '{self.cli_path}': {e}")
            self.is_available = False
            return None

    @abc.abstractmethod
    def primary_interface_name(self, family=socket.AF_INET):
        """Returns the primary interface name for the address family, or None."""


class RoutingTableProvider(CommandProvider):
    """Reads the interface of the default route from iproute2 (Linux)."""
    executable = 'ip'
    env_var = 'IPTOOLS_IP_PATH'

    def primary_interface_name(self, family=socket.AF_INET):
        family_flag = '-6' if family == socket.AF_INET6 else '-4'
        output = self._run_command('-j', family_flag, 'route', 'show', 'default')
        if not output:
            return None

        try:
            routes = json.loads(output)
        except json.JSONDecodeError as e:
            logging.error(f"Could not parse routing table output: {e}")
            return None

        for route in routes:
            if route.get('dev'):
                return route['dev']
        return None


class DynamicStoreProvider(CommandProvider):
    """Reads PrimaryInterface from the SystemConfiguration dynamic store (macOS)."""
    executable = 'scutil'
    env_var = 'IPTOOLS_SCUTIL_PATH'

    STORE_KEYS = {
        socket.AF_INET: 'State:/Network/Global/IPv4',
        socket.AF_INET6: 'State:/Network/Global/IPv6',
    }
    PRIMARY_INTERFACE = re.compile(r'^\s*PrimaryInterface\s*:\s*(\S+)\s*$', re.MULTILINE)

    def primary_interface_name(self, family=socket.AF_INET):
        key = self.STORE_KEYS.get(family, self.STORE_KEYS[socket.AF_INET])
        output = self._run_command(stdin=f"show {key}\n")
        if not output:
            return None

        match = self.PRIMARY_INTERFACE.search(output)
        return match.group(1) if match else None


def get_primary_interface_provider(platform=None):
    """
    Picks the primary interface backend for this platform.

    IPTOOLS_PRIMARY_INTERFACE, when set, takes precedence over the system.
    """
    override = os.getenv('IPTOOLS_PRIMARY_INTERFACE')
    if override:
        logging.info(f"Primary interface forced by IPTOOLS_PRIMARY_INTERFACE: {override}")
        return StaticProvider(override)

    platform = platform or sys.platform
    if platform == 'darwin':
        return DynamicStoreProvider()
    if platform.startswith('linux'):
        return RoutingTableProvider()

    logging.warning(f"Primary interface lookup is not supported on {platform}.")
    return StaticProvider(None)
