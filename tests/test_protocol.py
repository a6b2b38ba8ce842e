import json

from wifi_provision.models import DiscoveredNetwork
from wifi_provision.protocol import (
    CredentialSubmission,
    ScanRequest,
    encode_status,
    encode_wifi_list,
    parse_inbound,
)


def test_parse_scan_request() -> None:
    assert parse_inbound('{"scan": "start"}') == [ScanRequest()]


def test_parse_credentials() -> None:
    assert parse_inbound('{"ssid": "Home", "password": "pw1234"}') == [
        CredentialSubmission(ssid="Home", password="pw1234")
    ]


def test_parse_message_carrying_scan_and_credentials() -> None:
    commands = parse_inbound('{"scan": "start", "ssid": "Home", "password": ""}')

    assert commands == [ScanRequest(), CredentialSubmission(ssid="Home", password="")]


def test_parse_ignores_incomplete_or_invalid_payloads() -> None:
    assert parse_inbound('{"ssid": "Home"}') == []
    assert parse_inbound('{"password": "pw1234"}') == []
    assert parse_inbound('{"ssid": "", "password": "pw1234"}') == []
    assert parse_inbound('{"ssid": 5, "password": "pw1234"}') == []
    assert parse_inbound('{"scan": "stop"}') == []
    assert parse_inbound("[1, 2]") == []
    assert parse_inbound("{not json") == []


def test_encode_wifi_list() -> None:
    text = encode_wifi_list(
        [DiscoveredNetwork("Home", -42, True), DiscoveredNetwork("Cafe", -80, False)]
    )

    assert json.loads(text) == {
        "wifi_list": [
            {"ssid": "Home", "rssi": -42, "encrypted": True},
            {"ssid": "Cafe", "rssi": -80, "encrypted": False},
        ]
    }
    assert encode_wifi_list([]) == '{"wifi_list":[]}'


def test_encode_status_includes_ip_only_when_connected() -> None:
    assert encode_status("connected", "Home", "192.168.1.20") == (
        '{"status":"connected","ssid":"Home","ip":"192.168.1.20"}'
    )
    assert encode_status("failed", "Home", "192.168.1.20") == '{"status":"failed","ssid":"Home"}'
