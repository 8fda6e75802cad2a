"""py.test fixtures.

Speakers are Mock objects shaped like soco.SoCo, and device descriptions
are served from a dictionary instead of the network.
"""
from unittest.mock import MagicMock as Mock

import pytest

SPEAKER_DESCRIPTION = """<?xml version="1.0" encoding="utf-8" ?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <device>
    <deviceType>urn:schemas-upnp-org:device:ZonePlayer:1</deviceType>
    <serviceList>
      <service>
        <serviceType>urn:schemas-upnp-org:service:AlarmClock:1</serviceType>
        <serviceId>urn:upnp-org:serviceId:AlarmClock</serviceId>
      </service>
      <service>
        <serviceType>urn:schemas-upnp-org:service:MusicServices:1</serviceType>
        <serviceId>urn:upnp-org:serviceId:MusicServices</serviceId>
      </service>
    </serviceList>
    <deviceList>
      <device>
        <deviceType>urn:schemas-upnp-org:device:MediaRenderer:1</deviceType>
        <serviceList>
          <service>
            <serviceType>urn:schemas-upnp-org:service:AVTransport:1</serviceType>
            <serviceId>urn:upnp-org:serviceId:AVTransport</serviceId>
          </service>
        </serviceList>
      </device>
    </deviceList>
  </device>
</root>
"""

BRIDGE_DESCRIPTION = """<?xml version="1.0" encoding="utf-8" ?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <device>
    <deviceType>urn:schemas-upnp-org:device:ZonePlayer:1</deviceType>
    <serviceList>
      <service>
        <serviceType>urn:schemas-upnp-org:service:ZoneGroupTopology:1</serviceType>
        <serviceId>urn:upnp-org:serviceId:ZoneGroupTopology</serviceId>
      </service>
    </serviceList>
  </device>
</root>
"""


@pytest.fixture
def make_speaker():
    """Return a factory for fake speakers."""

    def factory(name, ip_address, uid=None, visible=True):
        speaker = Mock(name=name)
        speaker.player_name = name
        speaker.is_visible = visible
        speaker.ip_address = ip_address
        speaker.uid = uid or "RINCON_{}01400".format(ip_address.replace(".", ""))
        return speaker

    return factory


@pytest.fixture
def descriptions(monkeypatch):
    """Serve device descriptions by IP address.

    Fill the returned dictionary with ``ip -> xml``. Unknown addresses get
    the bridge description.
    """
    served = {}

    def fake_get(url, timeout=None):
        ip_address = url.split("//")[1].split(":")[0]
        response = Mock()
        response.content = served.get(ip_address, BRIDGE_DESCRIPTION).encode("utf-8")
        return response

    monkeypatch.setattr("sonos_group.requests.get", fake_get)
    return served
