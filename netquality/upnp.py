"""UPnP Internet Gateway Device port mapping.

One invocation walks four steps and stops at the first failure:

1. SSDP M-SEARCH for an InternetGatewayDevice,
2. fetch of the device descriptor named by the ``LOCATION`` header,
3. lookup of the ``WANIPConnection`` service control URL,
4. the SOAP ``AddPortMapping`` / ``DeletePortMapping`` call.

There are no retries; the transcript of the attempt is returned in an
:class:`UpnpSession` and mirrored to the event bus.
"""

from __future__ import annotations

import logging
import socket
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import urljoin
from xml.sax.saxutils import escape

import requests

from .events import EventBus

LOGGER = logging.getLogger(__name__)

SSDP_ADDRESS: Tuple[str, int] = ("239.255.255.250", 1900)
SEARCH_TARGET = "urn:schemas-upnp-org:device:InternetGatewayDevice:1"
SERVICE_NAMESPACE = "urn:schemas-upnp-org:service:WANIPConnection:1"

M_SEARCH = (
    "M-SEARCH * HTTP/1.1\r\n"
    "HOST:239.255.255.250:1900\r\n"
    f"ST:{SEARCH_TARGET}\r\n"
    'MAN:"ssdp:discover"\r\n'
    "MX:2\r\n\r\n"
)

ENVELOPE = (
    '<?xml version="1.0"?>'
    '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
    's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
    "<s:Body>"
    '<u:{action} xmlns:u="{namespace}">'
    "{arguments}"
    "</u:{action}>"
    "</s:Body></s:Envelope>"
)


class UpnpError(Exception):
    """A protocol step failed; the message is the user-facing diagnosis."""


class DiscoveryTimeout(UpnpError):
    pass


class DescriptorError(UpnpError):
    pass


class ServiceNotFound(UpnpError):
    pass


class SoapError(UpnpError):
    pass


@dataclass
class PortMapping:
    external_port: int
    protocol: str = "TCP"
    internal_port: Optional[int] = None
    internal_client: str = ""
    description: str = "netquality"

    def __post_init__(self) -> None:
        self.protocol = self.protocol.upper()
        if self.protocol not in ("TCP", "UDP"):
            raise ValueError(f"Unsupported protocol '{self.protocol}'")
        for port in (self.external_port, self.internal_port):
            if port is not None and not 1 <= int(port) <= 65535:
                raise ValueError(f"Port out of range: {port}")


@dataclass
class UpnpSession:
    action: str
    location: Optional[str] = None
    control_url: Optional[str] = None
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    transcript: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and self.status_code is not None and 200 <= self.status_code < 300

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "ok": self.ok,
            "location": self.location,
            "control_url": self.control_url,
            "status_code": self.status_code,
            "response_body": self.response_body,
            "error": self.error,
            "transcript": list(self.transcript),
        }


def parse_location(response: str) -> Optional[str]:
    for line in response.split("\r\n"):
        name, sep, value = line.partition(":")
        if sep and name.strip().lower() == "location":
            return value.strip()
    return None


def _local_name(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element.iter():
        if _local_name(child.tag) == name and child.text:
            return child.text.strip()
    return None


def find_control_url(descriptor: bytes) -> Optional[str]:
    """controlURL of the first service whose type mentions WANIPConnection."""
    try:
        root = ET.fromstring(descriptor)
    except ET.ParseError as exc:
        raise DescriptorError(f"Device descriptor is not valid XML: {exc}") from exc
    for element in root.iter():
        if _local_name(element.tag) != "service":
            continue
        service_type = _child_text(element, "serviceType")
        if service_type and "WANIPConnection" in service_type:
            return _child_text(element, "controlURL")
    return None


def build_envelope(action: str, arguments: List[Tuple[str, object]]) -> str:
    body = "".join(f"<{name}>{escape(str(value))}</{name}>" for name, value in arguments)
    return ENVELOPE.format(action=action, namespace=SERVICE_NAMESPACE, arguments=body)


def add_port_mapping_arguments(mapping: PortMapping) -> List[Tuple[str, object]]:
    internal_port = mapping.internal_port if mapping.internal_port is not None else mapping.external_port
    return [
        ("NewRemoteHost", ""),
        ("NewExternalPort", mapping.external_port),
        ("NewProtocol", mapping.protocol),
        ("NewInternalPort", internal_port),
        ("NewInternalClient", mapping.internal_client),
        ("NewEnabled", 1),
        ("NewPortMappingDescription", mapping.description),
        ("NewLeaseDuration", 0),
    ]


def delete_port_mapping_arguments(mapping: PortMapping) -> List[Tuple[str, object]]:
    return [
        ("NewRemoteHost", ""),
        ("NewExternalPort", mapping.external_port),
        ("NewProtocol", mapping.protocol),
    ]


class UpnpController:
    def __init__(
        self,
        events: EventBus,
        discovery_timeout: float = 3.0,
        http_timeout: float = 5.0,
        ssdp_address: Tuple[str, int] = SSDP_ADDRESS,
    ):
        self.events = events
        self.discovery_timeout = discovery_timeout
        self.http_timeout = http_timeout
        self.ssdp_address = ssdp_address

    def add_port_mapping(self, mapping: PortMapping) -> UpnpSession:
        return self._invoke("AddPortMapping", add_port_mapping_arguments(mapping))

    def delete_port_mapping(self, mapping: PortMapping) -> UpnpSession:
        return self._invoke("DeletePortMapping", delete_port_mapping_arguments(mapping))

    def _invoke(self, action: str, arguments: List[Tuple[str, object]]) -> UpnpSession:
        session = UpnpSession(action=action)
        self._note(session, f"UPnP discovery starting ({action})...")
        try:
            response = self.discover()
            self._note(session, "SSDP reply:\n" + response)

            session.location = parse_location(response)
            if not session.location:
                raise DescriptorError("SSDP reply has no LOCATION header.")
            self._note(session, f"Fetching device descriptor: {session.location}")
            descriptor = self.fetch_descriptor(session.location)

            control_path = find_control_url(descriptor)
            if not control_path:
                raise ServiceNotFound("No WANIPConnection control URL in the device descriptor.")
            try:
                session.control_url = urljoin(session.location, control_path)
            except ValueError as exc:
                raise DescriptorError(f"Cannot resolve control URL against {session.location}: {exc}") from exc
            self._note(session, f"Control URL: {session.control_url}")

            session.status_code, session.response_body = self.send_soap(session.control_url, action, arguments)
            self._note(session, f"{action} HTTP status: {session.status_code}")
            self._note(session, "Response:\n" + session.response_body)
        except UpnpError as exc:
            session.error = str(exc)
            self._note(session, session.error)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.exception("UPnP %s failed unexpectedly", action)
            session.error = f"UPnP {action} failed: {exc!r}"
            self._note(session, session.error)
        return session

    def discover(self) -> str:
        """Send one M-SEARCH and return the first reply verbatim."""
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP) as sock:
                sock.settimeout(self.discovery_timeout)
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
                sock.sendto(M_SEARCH.encode("utf-8"), self.ssdp_address)
                data, _ = sock.recvfrom(2048)
        except socket.timeout as exc:
            raise DiscoveryTimeout(
                "No UPnP gateway found: SSDP timed out (no UPnP router, or UPnP is disabled)."
            ) from exc
        except OSError as exc:
            raise DiscoveryTimeout(f"No UPnP gateway found: {exc}") from exc
        return data.decode("utf-8", errors="replace")

    def fetch_descriptor(self, location: str) -> bytes:
        try:
            response = requests.get(location, timeout=self.http_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise DescriptorError(f"Device descriptor fetch failed: {exc}") from exc
        return response.content

    def send_soap(self, control_url: str, action: str, arguments: List[Tuple[str, object]]) -> Tuple[int, str]:
        headers = {
            "Content-Type": 'text/xml; charset="utf-8"',
            "SOAPAction": f'"{SERVICE_NAMESPACE}#{action}"',
        }
        body = build_envelope(action, arguments)
        try:
            response = requests.post(
                control_url,
                data=body.encode("utf-8"),
                headers=headers,
                timeout=self.http_timeout,
            )
        except requests.RequestException as exc:
            raise SoapError(f"SOAP error ({action}): {exc}") from exc
        return response.status_code, response.text

    def _note(self, session: UpnpSession, text: str) -> None:
        session.transcript.append(text)
        self.events.log_line(text, LOGGER)
