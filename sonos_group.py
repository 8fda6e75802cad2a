#!/usr/bin/env python3
"""
Sonos Group Tool

Discovers Sonos speakers on the network and joins zones together for
synchronized playback.
"""

__version__ = "1.0.0"

import warnings

# Suppress urllib3 OpenSSL warning
warnings.filterwarnings('ignore', message='urllib3 v2 only supports OpenSSL')

import argparse
import ipaddress
import logging
import sys
from collections import namedtuple
from typing import Callable, Dict, List, Optional

import requests
import soco
from soco.exceptions import SoCoException, SoCoUPnPException
from soco.xml import XML

_LOG = logging.getLogger(__name__)

MUSIC_SERVICE = "urn:upnp-org:serviceId:MusicServices"
DEVICE_DESCRIPTION_URL = "http://{}:1400/xml/device_description.xml"
DEVICE_NS = "{urn:schemas-upnp-org:device-1-0}"

# AVTransport fault for "Resource not found", the stream pointed at does not exist
NOT_FOUND_ERROR_CODES = {"716"}

JOINED = 'joined'
NOT_FOUND = 'not-found'
UNKNOWN_ZONE = 'unknown-zone'
FAILED = 'failed'

Directory = Dict[str, List[soco.SoCo]]

JoinRequest = namedtuple('JoinRequest', ['master', 'members'])
JoinOutcome = namedtuple('JoinOutcome', ['member', 'master', 'status', 'error'])


class SonosGroupError(Exception):
    """Base class for all errors raised by this tool."""


class UsageError(SonosGroupError):
    """The command line could not be understood."""


class DiscoveryError(SonosGroupError):
    """Speakers could not be enumerated."""


class UnknownZoneError(SonosGroupError):
    """A zone name is not present in the directory."""

    def __init__(self, zone: str):
        super().__init__(f"Unknown zone: {zone}")
        self.zone = zone


class JoinNotFoundError(SonosGroupError):
    """The member refused the master's stream because it could not be found."""


class JoinTransportError(SonosGroupError):
    """A network or control failure while redirecting a member."""


def is_speaker(device: soco.SoCo, timeout: float = 5) -> bool:
    """
    Check whether a device carries the music service.

    Bridges and other non-playing devices answer discovery too, so the
    device description is fetched and searched for MUSIC_SERVICE.

    Args:
        device: SoCo device object
        timeout: HTTP timeout in seconds for the description request

    Returns:
        True if the device advertises MUSIC_SERVICE
    """
    url = DEVICE_DESCRIPTION_URL.format(device.ip_address)
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    tree = XML.fromstring(response.content)
    return any(
        service_id.text == MUSIC_SERVICE
        for service_id in tree.iter(DEVICE_NS + 'serviceId')
    )


def build_directory(timeout: int = 5,
                    discover: Optional[Callable] = None) -> Directory:
    """
    Discover speakers and group them by zone name.

    A zone holding a stereo pair or a bonded set maps to several devices.
    SoCo returns an unordered set, so each zone's devices are put in a
    fixed order by speaker_order().

    Args:
        timeout: Maximum time to wait for discovery in seconds
        discover: Discovery function, soco.discover by default

    Returns:
        Dictionary of zone name to list of SoCo device objects

    Raises:
        DiscoveryError: If discovery or a device query fails
    """
    if discover is None:
        discover = soco.discover

    directory = {}
    try:
        devices = discover(timeout=timeout, include_invisible=True) or []
        for device in devices:
            if not is_speaker(device):
                _LOG.debug("Skipping %s, no music service", device.ip_address)
                continue
            name = device.player_name
            _LOG.debug("Found %s at %s", name, device.ip_address)
            directory.setdefault(name, []).append(device)
        for devices in directory.values():
            devices.sort(key=speaker_order)
    except (OSError, requests.RequestException, SoCoException) as e:
        raise DiscoveryError(f"Discovery failed: {e}") from e

    return {name: directory[name] for name in sorted(directory)}


def speaker_order(device: soco.SoCo) -> tuple:
    """
    Sort key placing the visible device of a bonded zone first.

    The invisible halves of a stereo pair and any Sub follow, and ties are
    broken by IP address so the order is the same on every run.
    """
    return (not device.is_visible, ipaddress.ip_address(device.ip_address))


def first_speaker(directory: Directory, zone: str) -> soco.SoCo:
    """
    Return the device that stands for a zone.

    For a bonded zone this is the visible device, the one the others in
    the zone play along with. It is the synchronization target whenever
    the zone acts as master.

    Raises:
        UnknownZoneError: If the zone is not in the directory
    """
    try:
        return directory[zone][0]
    except (KeyError, IndexError):
        raise UnknownZoneError(zone) from None


def make_join_request(zones: List[str]) -> JoinRequest:
    """Split zone names into master and members, requiring two or more."""
    if len(zones) < 2:
        raise UsageError("Supply at least two speaker zones to join")
    return JoinRequest(zones[0], list(zones[1:]))


def transport_redirect_uri(uid: str) -> str:
    """Return the URI that points a speaker at another speaker's stream."""
    return f"x-rincon:{uid}"


def resolve_master_uri(directory: Directory, master_name: str) -> str:
    """
    Look up the master zone and build the URI members are pointed at.

    Raises:
        UnknownZoneError: If the master zone is not in the directory
        JoinTransportError: If the master's uid cannot be read
    """
    master = first_speaker(directory, master_name)
    try:
        return transport_redirect_uri(master.uid)
    except (OSError, requests.RequestException, SoCoException) as e:
        raise JoinTransportError(f"Could not resolve {master_name}: {e}") from e


def redirect_transport(member: soco.SoCo, uri: str) -> None:
    """
    Point a member's transport at the given stream.

    Raises:
        JoinNotFoundError: If the speaker reports the stream as missing
        JoinTransportError: On any other control or network failure
    """
    try:
        member.avTransport.SetAVTransportURI(
            [
                ("InstanceID", 0),
                ("CurrentURI", uri),
                ("CurrentURIMetaData", ""),
            ]
        )
        # Zone group state changed, cleared as in SoCo.join
        member._zgs_cache.clear()
    except SoCoUPnPException as e:
        if str(e.error_code) in NOT_FOUND_ERROR_CODES:
            raise JoinNotFoundError(str(e)) from e
        raise JoinTransportError(str(e)) from e
    except (OSError, requests.RequestException, SoCoException) as e:
        raise JoinTransportError(str(e)) from e


def join_group(master_name: str, member_names: List[str],
               directory: Directory) -> List[JoinOutcome]:
    """
    Join each member zone to the master zone.

    The master's uid is resolved once, then every member is redirected to
    it in the order given. A failure on one member is recorded and the
    next member is still attempted.

    Args:
        master_name: Zone whose stream the members will play
        member_names: Zones to join to the master
        directory: Result of build_directory()

    Returns:
        One JoinOutcome per member, in input order

    Raises:
        UsageError: If fewer than two zones are given in total
    """
    request = make_join_request([master_name] + list(member_names))
    master_name = request.master

    uri = None
    master_error = None
    try:
        uri = resolve_master_uri(directory, master_name)
    except (UnknownZoneError, JoinTransportError) as e:
        master_error = e

    outcomes = []
    for name in request.members:
        if isinstance(master_error, UnknownZoneError):
            outcomes.append(JoinOutcome(name, master_name, UNKNOWN_ZONE, master_error))
            continue
        try:
            member = first_speaker(directory, name)
        except UnknownZoneError as e:
            outcomes.append(JoinOutcome(name, master_name, UNKNOWN_ZONE, e))
            continue
        if master_error is not None:
            outcomes.append(JoinOutcome(name, master_name, FAILED, master_error))
            continue

        _LOG.debug("Redirecting %s to %s", name, uri)
        try:
            redirect_transport(member, uri)
        except JoinNotFoundError as e:
            outcomes.append(JoinOutcome(name, master_name, NOT_FOUND, e))
        except JoinTransportError as e:
            outcomes.append(JoinOutcome(name, master_name, FAILED, e))
        else:
            outcomes.append(JoinOutcome(name, master_name, JOINED, None))

    return outcomes


def format_zone(zone: str, devices: List[soco.SoCo]) -> str:
    """Format one zone line for the list command."""
    uids = [device.uid for device in devices]
    ips = [device.ip_address for device in devices]
    return f"{zone}: UIDs={uids} IPs={ips}"


def do_list(timeout: int) -> int:
    """Print every zone with the uids and addresses of its speakers."""
    directory = build_directory(timeout=timeout)
    if not directory:
        print("No Sonos speakers found. Make sure you're on the same network.",
              file=sys.stderr)
        return 0

    try:
        for zone in sorted(directory):
            print(format_zone(zone, directory[zone]))
    except (OSError, requests.RequestException, SoCoException) as e:
        raise DiscoveryError(f"Could not query speakers: {e}") from e
    return 0


def report_outcome(outcome: JoinOutcome) -> None:
    """Print one join outcome, warnings to stderr."""
    if outcome.status == JOINED:
        print(f"Joined {outcome.member} to {outcome.master}")
    elif outcome.status == NOT_FOUND:
        print(f"Could not find zone '{outcome.master}' on the network "
              f"(joining {outcome.member}): {outcome.error}", file=sys.stderr)
    elif outcome.status == UNKNOWN_ZONE:
        if outcome.error.zone == outcome.member:
            print(f"Unknown speaker: {outcome.member}", file=sys.stderr)
        else:
            print(f"Unknown speaker: {outcome.error.zone} "
                  f"(joining {outcome.member})", file=sys.stderr)
    else:
        print(f"Failed to join {outcome.member} to {outcome.master}: "
              f"{outcome.error}", file=sys.stderr)


def do_join(zones: List[str], timeout: int) -> int:
    """Join the members to the master and report each result."""
    request = make_join_request(zones)
    directory = build_directory(timeout=timeout)
    for outcome in join_group(request.master, request.members, directory):
        report_outcome(outcome)
    return 0


class ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises UsageError instead of exiting."""

    def error(self, message):
        raise UsageError(message)


def positive_int(value: str) -> int:
    """argparse type for a timeout in whole seconds."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid timeout: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError("timeout must be positive")
    return number


def build_parser() -> ArgumentParser:
    """Build the command line parser."""
    parser = ArgumentParser(
        prog='sonos-group',
        description='List Sonos zones and join them for synchronized playback',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s list                                # List zones, uids and IPs
  %(prog)s join "Living Room" Kitchen          # Kitchen plays Living Room
  %(prog)s join "Living Room" Kitchen Office   # Join several zones
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--timeout', '-t',
        type=positive_int,
        default=5,
        metavar='SEC',
        help='Device discovery timeout in seconds (default: 5)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Show debug logging'
    )

    subparsers = parser.add_subparsers(dest='command', metavar='{list,join}')
    subparsers.required = True

    subparsers.add_parser(
        'list',
        help='List zones with their speaker uids and IP addresses'
    )

    join = subparsers.add_parser(
        'join',
        help='Join member zones to a master zone'
    )
    join.add_argument('master', help='Zone the others will play along with')
    join.add_argument('members', nargs='+', metavar='member',
                      help='Zone to join to the master')

    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments, raising UsageError on bad input."""
    return build_parser().parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    try:
        args = parse_args(argv)
    except UsageError as e:
        build_parser().print_usage(sys.stderr)
        print(f"Error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    try:
        if args.command == 'list':
            return do_list(args.timeout)
        return do_join([args.master] + args.members, args.timeout)
    except UsageError as e:
        build_parser().print_usage(sys.stderr)
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except DiscoveryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
