import json
import logging
import os
import sys

from dotenv import load_dotenv

from iptools.core.interface_catalog import AddressParseError, InterfaceCatalog, parse_dotted_address

# Load environment variables from a .env file
load_dotenv()

PROGRAM = 'iptools'

USAGE = [
    ('-getactiveifaddress', None, 'Active Interface address (IPv4)'),
    ('-getifaddress', '<name>', 'Interface address (IPv4) for supplied interface name'),
    ('-getactiveifname', None, 'Name of the active interface'),
    ('-getifaddresses', None, 'Interface addresses in array'),
    ('-getifnames', None, 'Interface names in array'),
    ('-getifaddresseswithnames', None, 'Interface address / name / family dictionary'),
    ('-putaddresstoarray', '<ifaddress>', 'Interface address components in array for supplied interface address'),
]


class UsageError(Exception):
    """Raised for a missing or unknown command, or a wrong number of arguments."""
    pass


class ArgumentCountError(UsageError):
    """Raised when a known command gets the wrong number of arguments."""
    pass


def format_usage():
    lines = [f"{PROGRAM}: Command line utility for getting network interface values", "", "         Usage:"]
    for command, argument, description in USAGE:
        invocation = f"{command} {argument}" if argument else command
        lines.append(f"         {PROGRAM} {invocation:<36}{description}")
    return "\n".join(lines)


def _expect_arguments(command, args, argument=None):
    expected = 1 if argument else 0
    if len(args) != expected:
        should_be = f"{command} {argument}" if argument else command
        raise ArgumentCountError(f"Incorrect amount of arguments for {command}. Should be {should_be}")


def run_command(catalog, command, args):
    """
    Runs one command against the catalog.

    Returns:
        str: The text to print on standard output.
    """
    if command == '-getactiveifaddress':
        _expect_arguments(command, args)
        return catalog.primary_interface_address() or "No active ifaddress"

    if command == '-getifaddress':
        _expect_arguments(command, args, '<name>')
        return catalog.address_for_interface(args[0]) or f"No active ifaddress for {args[0]}"

    if command == '-getactiveifname':
        _expect_arguments(command, args)
        return catalog.primary_interface_name() or "No active ipv4 or ipv6 network interface"

    if command == '-getifaddresses':
        _expect_arguments(command, args)
        return json.dumps(catalog.list_active_addresses())

    if command == '-getifnames':
        _expect_arguments(command, args)
        return json.dumps(catalog.list_active_interface_names())

    if command == '-getifaddresseswithnames':
        _expect_arguments(command, args)
        return json.dumps(catalog.address_map_by_interface_and_family())

    if command == '-putaddresstoarray':
        _expect_arguments(command, args, '<ifaddress>')
        return json.dumps(parse_dotted_address(args[0]))

    raise UsageError(f"Unknown command: {command}")


def setup_logging():
    """Logs go to stderr, or to IPTOOLS_LOG_FILE; stdout is reserved for results."""
    level_name = os.getenv("IPTOOLS_LOG_LEVEL", "WARNING").upper()
    level = logging.getLevelName(level_name)
    known_level = isinstance(level, int)
    if not known_level:
        level = logging.WARNING

    log_file = os.getenv('IPTOOLS_LOG_FILE')
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        filename=log_file,
        filemode='w' if log_file else 'a',
    )
    if not known_level:
        logging.warning(f"Unknown IPTOOLS_LOG_LEVEL '{level_name}'. Using WARNING.")


def main(argv=None, catalog=None):
    """The command line entry point. Returns the process exit status."""
    setup_logging()
    argv = sys.argv if argv is None else argv
    catalog = catalog or InterfaceCatalog()

    try:
        if len(argv) < 2:
            raise UsageError("No command given")
        output = run_command(catalog, argv[1], argv[2:])
    except ArgumentCountError as e:
        print(e, file=sys.stderr)
        print(format_usage())
        return 1
    except UsageError as e:
        logging.info(f"Usage error: {e}")
        print(format_usage())
        return 1
    except AddressParseError as e:
        logging.error(f"Could not parse address: {e}")
        print(f"{PROGRAM}: {e}", file=sys.stderr)
        return 1

    print(output)
    return 0


if __name__ == '__main__':
    sys.exit(main())
