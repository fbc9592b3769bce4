"""REST client for Hue bridges and deCONZ gateways.

:class:`RemoteStateClient` wraps the v1 REST API
(``/api/<username>/<kind>/<id>/...``) on top of :mod:`aiohttp`:

* **Path parsing**: the API accepts only ``/kind`` or ``/kind/id`` for
  most kinds; deeper paths are fetched at the deepest supported level
  and indexed client-side (:func:`parse_resource`).
* **Throttling**: every PUT blocks subsequent PUTs for
  ``message_count(body) * wait_time_put`` (group PUTs use
  ``wait_time_put_group``), reflecting the Zigbee messages the bridge
  has to send.  Waiting callers are served in submission order.
* **Error model**: ``error`` entries in a 200 response are raised as
  :class:`~pyHueSync.errors.ApiError` unless they are non-critical
  (logged and skipped).
* **Retry**: connection resets, timeouts, HTTP 503 and the bridge's
  "internal error" are retried after ``wait_time_resend``, at most
  :data:`MAX_RETRIES` times.
* **Certificate pinning**: over HTTPS, the Hue bridge certificate is
  validated and its fingerprint pinned on first use.

Usage::

    client = RemoteStateClient("192.168.1.20", username="0123456789")
    await client.connect()
    lights = await client.get("/lights")
    await client.put("/lights/1/state", {"on": True, "bri": 254})
    await client.close()
"""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import socket
import ssl
import xml.etree.ElementTree as ElementTree
from typing import (
    Any,
    Dict,
    FrozenSet,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Tuple,
)

import aiohttp
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from pyHueSync.enums import ApiErrorType, BridgeType
from pyHueSync.errors import (
    ApiError,
    CertificateError,
    ConfigurationError,
    HttpError,
    LinkButtonNotPressedError,
    ProtocolError,
    TransportError,
    UnsupportedBridgeError,
)

logger = logging.getLogger(__name__)

#: Maximum number of retries of a transient failure.
MAX_RETRIES: int = 5

#: Bridge id prefixes of Hue bridges.
HUE_PREFIXES: Tuple[str, ...] = ("001788", "ECB5FA")
#: Bridge id prefix of deCONZ gateways.
DECONZ_PREFIX = "00212E"
#: First Hue API version served over HTTPS.
HTTPS_API_VERSION: Tuple[int, ...] = (1, 24, 0)

#: Kinds that natively accept ``/kind`` and ``/kind/id``.
NATIVE_KINDS: FrozenSet[str] = frozenset(
    {
        "lights",
        "groups",
        "schedules",
        "scenes",
        "sensors",
        "rules",
        "resourcelinks",
        "touchlink",
    }
)
#: Kinds that natively accept only ``/kind``.
SINGLETON_KINDS: FrozenSet[str] = frozenset({"config", "capabilities"})

#: Attribute classes; each class touched by a PUT costs one radio message.
MESSAGE_CLASSES: Tuple[FrozenSet[str], ...] = (
    frozenset({"on"}),
    frozenset({"bri", "bri_inc"}),
    frozenset(
        {
            "xy",
            "ct",
            "hue",
            "sat",
            "xy_inc",
            "ct_inc",
            "hue_inc",
            "sat_inc",
            "effect",
        }
    ),
)


class ResourcePath(NamedTuple):
    """A resource split into the requested path and client-side keys."""

    request: str
    remainder: Tuple[str, ...]


# ---------------------------------------------------------------------------
#  Helpers
# ---------------------------------------------------------------------------


def parse_resource(resource: str) -> ResourcePath:
    """Split *resource* into what the bridge serves and what to index.

    >>> parse_resource("/lights/1/state/on")
    ResourcePath(request='/lights/1', remainder=('state', 'on'))
    """
    if not isinstance(resource, str) or not resource.startswith("/"):
        raise ValueError("%r: invalid resource" % (resource,))
    path = [p for p in resource[1:].split("/") if p]
    if not path:
        return ResourcePath(resource, ())
    kind = path[0]
    if kind == "lights" and len(path) == 3 and path[2] == "connectivity2":
        return ResourcePath(resource, ())
    if kind == "groups" and len(path) >= 3 and path[2] == "scenes":
        depth = 4 if len(path) >= 4 else 3
        return ResourcePath("/" + "/".join(path[:depth]), tuple(path[depth:]))
    if kind in NATIVE_KINDS and len(path) > 2:
        return ResourcePath("/" + "/".join(path[:2]), tuple(path[2:]))
    if kind in SINGLETON_KINDS and len(path) > 1:
        return ResourcePath("/" + kind, tuple(path[1:]))
    return ResourcePath(resource, ())


def message_count(body: Mapping[str, Any]) -> int:
    """Number of radio messages a PUT of *body* generates (minimum 1)."""
    keys = set(body)
    return max(1, sum(1 for cls in MESSAGE_CLASSES if cls & keys))


def parse_version(version: str) -> Tuple[int, ...]:
    """``"1.46.0"`` -> ``(1, 46, 0)``; unparsable parts count as 0."""
    parts = []
    for part in str(version).split("."):
        digits = "".join(c for c in part if c.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def bridge_type(bridgeid: str) -> Optional[BridgeType]:
    """Bridge family for *bridgeid*, or ``None`` when not recognised."""
    prefix = bridgeid[:6].upper()
    if prefix in HUE_PREFIXES:
        return BridgeType.HUE
    if prefix == DECONZ_PREFIX:
        return BridgeType.DECONZ
    return None


def certificate_fingerprint(certificate: x509.Certificate) -> str:
    """SHA-256 fingerprint as colon-separated upper-case hex."""
    return ":".join(
        "%02X" % b for b in certificate.fingerprint(hashes.SHA256())
    )


def _name_attribute(name: x509.Name, oid: x509.ObjectIdentifier) -> str:
    values = name.get_attributes_for_oid(oid)
    return str(values[0].value) if values else ""


def _xml_to_dict(element: ElementTree.Element) -> Any:
    children = list(element)
    if not children:
        return (element.text or "").strip()
    result: Dict[str, Any] = {}
    for child in children:
        tag = child.tag.rsplit("}", 1)[-1]
        value = _xml_to_dict(child)
        if tag in result:
            if not isinstance(result[tag], list):
                result[tag] = [result[tag]]
            result[tag].append(value)
        else:
            result[tag] = value
    return result


def _is_connection_reset(exc: BaseException) -> bool:
    if isinstance(exc, aiohttp.ServerDisconnectedError):
        return True
    if isinstance(exc, aiohttp.ClientOSError):
        return exc.errno in (errno.ECONNRESET, errno.EPIPE)
    return False


# ---------------------------------------------------------------------------
#  Client
# ---------------------------------------------------------------------------


class RemoteStateClient:
    """Client for one bridge.

    Parameters
    ----------
    host:
        Host name or IP address, optionally with ``:port``.
    username:
        API key; ``None`` for unauthenticated access.
    bridgeid:
        Expected bridge id; learnt on :meth:`connect` when ``None``.
    fingerprint:
        Pinned SHA-256 certificate fingerprint.  Implies HTTPS.
    https:
        Force HTTPS.
    timeout:
        Request timeout in seconds.
    wait_time_put:
        Per-message delay after a PUT to a light or sensor.
    wait_time_put_group:
        Per-message delay after a PUT to a group.
    wait_time_resend:
        Delay before retrying a transient failure.
    max_retries:
        Maximum number of retries of a transient failure.
    phoscon:
        Ask a deCONZ gateway for the Phoscon API flavour.
    session:
        Shared :class:`aiohttp.ClientSession`; the client creates (and
        closes) its own when ``None``.
    """

    def __init__(
        self,
        host: str,
        *,
        username: Optional[str] = None,
        bridgeid: Optional[str] = None,
        fingerprint: Optional[str] = None,
        https: bool = False,
        timeout: float = 5.0,
        wait_time_put: float = 0.05,
        wait_time_put_group: float = 1.0,
        wait_time_resend: float = 0.3,
        max_retries: int = MAX_RETRIES,
        phoscon: bool = False,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        if not host:
            raise ConfigurationError("host: missing")
        self._host = host
        self._username = username
        self._bridgeid = bridgeid.upper() if bridgeid else None
        self._fingerprint = fingerprint
        self._https = https or fingerprint is not None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._wait_time_put = wait_time_put
        self._wait_time_put_group = wait_time_put_group
        self._wait_time_resend = wait_time_resend
        self._max_retries = max_retries
        self._phoscon = phoscon
        self._session = session
        self._own_session = session is None
        self._config: Optional[Dict[str, Any]] = None
        self._type: Optional[BridgeType] = None

        # Throttle bookkeeping, shared by every PUT through this client.
        self._put_lock = asyncio.Lock()
        self._put_blocked_until: float = 0.0

        # Hue bridges use a self-signed certificate; it is checked
        # against the bridge id and pinned instead.
        self._ssl_context = ssl.create_default_context()
        self._ssl_context.check_hostname = False
        self._ssl_context.verify_mode = ssl.CERT_NONE

    # ---- properties --------------------------------------------------

    @property
    def host(self) -> str:
        return self._host

    @property
    def username(self) -> Optional[str]:
        return self._username

    @username.setter
    def username(self, value: Optional[str]) -> None:
        self._username = value

    @property
    def bridgeid(self) -> Optional[str]:
        return self._bridgeid

    @property
    def fingerprint(self) -> Optional[str]:
        """Pinned certificate fingerprint, if any."""
        return self._fingerprint

    @fingerprint.setter
    def fingerprint(self, value: Optional[str]) -> None:
        self._fingerprint = value

    @property
    def https(self) -> bool:
        return self._https

    @property
    def is_hue(self) -> bool:
        return self._type is BridgeType.HUE

    @property
    def is_deconz(self) -> bool:
        return self._type is BridgeType.DECONZ

    @property
    def base_url(self) -> str:
        return ("https://" if self._https else "http://") + self._host

    def reconfirm(self) -> None:
        """Forget the pinned fingerprint; the next response pins anew."""
        logger.info("%s: certificate fingerprint cleared", self._host)
        self._fingerprint = None

    # ---- session -----------------------------------------------------

    async def get_session(self) -> aiohttp.ClientSession:
        """Return the HTTP session, creating it on first use."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=self._ssl_context)
            self._session = aiohttp.ClientSession(connector=connector)
            self._own_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if the client created it."""
        if self._own_session and self._session is not None:
            await self._session.close()
        self._session = None

    # ---- connection --------------------------------------------------

    async def connect(self) -> Dict[str, Any]:
        """Identify the bridge and switch to HTTPS where supported.

        Returns
        -------
        dict
            The unauthenticated ``/config``.

        Raises
        ------
        UnsupportedBridgeError
            If the host is not a Hue bridge or deCONZ gateway.
        ConfigurationError
            If the bridge id differs from the expected one.
        """
        config = await self.config()
        bridgeid = str(config.get("bridgeid", "")).upper()
        if not bridgeid:
            raise UnsupportedBridgeError(
                "%s: no bridgeid in /config" % self._host
            )
        if self._bridgeid is None:
            self._bridgeid = bridgeid
        elif bridgeid != self._bridgeid:
            raise ConfigurationError(
                "%s: bridgeid mismatch: expected %s, got %s"
                % (self._host, self._bridgeid, bridgeid)
            )
        self._type = bridge_type(bridgeid)
        if self._type is None:
            raise UnsupportedBridgeError(
                "%s: %s: unsupported bridge %s"
                % (self._host, bridgeid, config.get("modelid", "(unknown)"))
            )
        if self._type is BridgeType.HUE:
            version = parse_version(config.get("apiversion", "0"))
            if version >= HTTPS_API_VERSION:
                self._https = True
        logger.info(
            "%s: %s %s, api %s", self._host, self._type.value,
            bridgeid, config.get("apiversion"),
        )
        return config

    async def config(self) -> Dict[str, Any]:
        """Unauthenticated ``GET /config`` (cached)."""
        if self._config is None:
            self._config = await self._request(
                "GET", "/config", authenticated=False
            )
        return self._config

    async def description(self) -> Dict[str, Any]:
        """``/description.xml`` converted to a dictionary."""
        url = self.base_url + "/description.xml"
        status, text = await self._http("GET", url, "/description.xml")
        if status != 200:
            raise HttpError(status, method="GET", resource="/description.xml")
        try:
            root = ElementTree.fromstring(text)
        except ElementTree.ParseError as exc:
            raise ProtocolError("description.xml: %s" % exc) from exc
        return _xml_to_dict(root)

    # ---- REST --------------------------------------------------------

    async def get(self, resource: str) -> Any:
        """Retrieve *resource*, indexing client-side where needed."""
        path = parse_resource(resource)
        response = await self._request("GET", path.request)
        for key in path.remainder:
            if isinstance(response, dict):
                response = response.get(key)
            elif isinstance(response, list) and key.isdigit():
                index = int(key)
                response = response[index] if index < len(response) else None
            else:
                response = None
        if response is None and path.remainder:
            raise ApiError(
                ApiErrorType.RESOURCE_NOT_AVAILABLE,
                resource,
                "/%s: not found in resource %s"
                % ("/".join(path.remainder), path.request),
            )
        return response

    async def put(
        self, resource: str, body: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """Update *resource*; returns ``{attribute: value}`` of successes."""
        response = await self._request("PUT", resource, dict(body))
        result: Dict[str, Any] = {}
        if isinstance(response, list):
            for entry in response:
                success = entry.get("success") if isinstance(entry, dict) else None
                if isinstance(success, dict):
                    for key, value in success.items():
                        result[key.rsplit("/", 1)[-1]] = value
            return result
        return response

    async def post(
        self,
        resource: str,
        body: Optional[Mapping[str, Any]] = None,
        *,
        authenticated: bool = True,
    ) -> Any:
        """Create a resource; returns the first success object."""
        response = await self._request(
            "POST", resource, None if body is None else dict(body),
            authenticated=authenticated,
        )
        if isinstance(response, list) and response:
            first = response[0]
            if isinstance(first, dict) and "success" in first:
                return first["success"]
        return response

    async def delete(self, resource: str) -> Any:
        """Delete *resource*; returns the deleted path."""
        response = await self._request("DELETE", resource)
        if isinstance(response, list) and response:
            success = response[0].get("success") if isinstance(response[0], dict) else None
            if isinstance(success, str) and len(success.split(" ")) == 2:
                return success.split(" ")[0]
        return response

    async def get_v2(self, resource: str) -> Dict[str, Any]:
        """``GET /clip/v2<resource>`` on a Hue bridge."""
        url = self.base_url + "/clip/v2" + resource
        status, body = await self._http(
            "GET", url, resource, headers=self.v2_headers()
        )
        if status != 200:
            raise HttpError(status, method="GET", resource=resource)
        data = self._parse_json(body, "GET", resource)
        if isinstance(data, dict) and data.get("errors"):
            logger.warning("%s: %s", resource, data["errors"])
        return data

    def v2_headers(self) -> Dict[str, str]:
        """Headers authenticating a v2 request."""
        headers = {"Connection": "keep-alive"}
        if self._username is not None:
            headers["hue-application-key"] = self._username
        return headers

    # ---- authentication ----------------------------------------------

    async def create_user(self, application: str) -> str:
        """Request a new username; needs the link button pressed.

        Raises
        ------
        LinkButtonNotPressedError
            If the bridge is locked.
        """
        if not application:
            raise ValueError("%r: invalid application name" % (application,))
        devicetype = "%s#%s" % (application, socket.gethostname().split(".")[0])
        success = await self.post(
            "/", {"devicetype": devicetype}, authenticated=False
        )
        username = success.get("username") if isinstance(success, dict) else None
        if not username:
            raise ProtocolError("%s: no username in %r" % (self._host, success))
        self._username = username
        logger.info("%s: created username for %s", self._host, devicetype)
        return username

    async def wait_for_user(
        self, application: str, interval: float = 5.0
    ) -> str:
        """Retry :meth:`create_user` until the link button is pressed."""
        while True:
            try:
                return await self.create_user(application)
            except LinkButtonNotPressedError:
                logger.info(
                    "%s: press the link button to create a username",
                    self._host,
                )
            except TransportError as exc:
                logger.info("%s: bridge not reachable: %s", self._host, exc)
            await asyncio.sleep(interval)

    async def unlock(self) -> Dict[str, Any]:
        """Allow creating a username without pressing the link button."""
        if self.is_deconz:
            return await self.put("/config", {"unlock": 60})
        return await self.put("/config", {"linkbutton": True})

    # ---- certificate -------------------------------------------------

    def check_certificate(self, der: bytes) -> str:
        """Validate the bridge certificate and pin its fingerprint.

        Parameters
        ----------
        der:
            The peer certificate in DER encoding.

        Returns
        -------
        str
            The certificate fingerprint.

        Raises
        ------
        CertificateError
            If the certificate does not belong to this bridge or does
            not match the pinned fingerprint.
        """
        try:
            cert = x509.load_der_x509_certificate(der)
        except ValueError as exc:
            raise CertificateError(
                "%s: unreadable certificate: %s" % (self._host, exc)
            ) from exc
        bridgeid = (self._bridgeid or "").upper()
        subject = cert.subject
        issuer = cert.issuer
        serial = ("00" + format(cert.serial_number, "X"))[-16:]
        issuer_cn = _name_attribute(issuer, NameOID.COMMON_NAME)
        if (
            _name_attribute(subject, NameOID.COUNTRY_NAME) != "NL"
            or _name_attribute(subject, NameOID.ORGANIZATION_NAME) != "Philips Hue"
            or _name_attribute(subject, NameOID.COMMON_NAME).upper() != bridgeid
            or _name_attribute(issuer, NameOID.COUNTRY_NAME) != "NL"
            or _name_attribute(issuer, NameOID.ORGANIZATION_NAME) != "Philips Hue"
            or (issuer_cn.upper() != bridgeid and issuer_cn != "root-bridge")
            or serial != bridgeid
        ):
            logger.debug(
                "%s: certificate subject %s, issuer %s, serial %s",
                self._host, subject.rfc4514_string(),
                issuer.rfc4514_string(), serial,
            )
            raise CertificateError("%s: invalid SSL certificate" % self._host)
        fingerprint = certificate_fingerprint(cert)
        if self._fingerprint is None:
            self._fingerprint = fingerprint
            logger.info("%s: pinned certificate %s", self._host, fingerprint)
        elif fingerprint != self._fingerprint:
            raise CertificateError(
                "%s: SSL certificate fingerprint mismatch" % self._host
            )
        return fingerprint

    def check_response_certificate(
        self, response: aiohttp.ClientResponse
    ) -> None:
        """Run :meth:`check_certificate` on the peer of *response*."""
        connection = response.connection
        transport = connection.transport if connection is not None else None
        ssl_object = (
            transport.get_extra_info("ssl_object")
            if transport is not None else None
        )
        der = ssl_object.getpeercert(binary_form=True) if ssl_object else None
        if not der:
            logger.debug("%s: no peer certificate", self._host)
            return
        self.check_certificate(der)

    # ---- internals ---------------------------------------------------

    def _api_url(self, resource: str, authenticated: bool) -> str:
        url = self.base_url + "/api"
        if authenticated and self._username is not None:
            url += "/" + self._username
        return url + resource

    async def _throttle(self, resource: str, body: Mapping[str, Any]) -> None:
        loop = asyncio.get_running_loop()
        async with self._put_lock:
            delay = self._put_blocked_until - loop.time()
            if delay > 0:
                logger.debug("PUT %s: throttled for %.3fs", resource, delay)
                await asyncio.sleep(delay)
            if resource.startswith("/groups"):
                per_message = self._wait_time_put_group
            else:
                per_message = self._wait_time_put
            self._put_blocked_until = (
                loop.time() + message_count(body) * per_message
            )

    async def _request(
        self,
        method: str,
        resource: str,
        body: Optional[Dict[str, Any]] = None,
        *,
        authenticated: bool = True,
    ) -> Any:
        if method not in ("GET", "PUT", "POST", "DELETE"):
            raise ValueError("%s: invalid method" % method)
        url = self._api_url(resource, authenticated)
        retries = 0
        while True:
            try:
                if method == "PUT":
                    await self._throttle(resource, body or {})
                status, text = await self._http(method, url, resource, body)
                if status != 200:
                    raise HttpError(status, method=method, resource=resource)
                response = self._parse_json(text, method, resource)
                return self._check_response(method, resource, response)
            except (TransportError, ApiError) as exc:
                if not exc.transient or retries >= self._max_retries:
                    logger.debug("%s %s: %s", method, resource, exc)
                    raise
                retries += 1
                logger.debug(
                    "%s %s: %s, retry %d in %.1fs", method, resource, exc,
                    retries, self._wait_time_resend,
                )
                await asyncio.sleep(self._wait_time_resend)

    async def _http(
        self,
        method: str,
        url: str,
        resource: str,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, str]:
        """Send one request; returns ``(status, body text)``."""
        session = await self.get_session()
        if headers is None:
            headers = {"Connection": "keep-alive"}
            if self._phoscon:
                headers["Accept"] = "application/vnd.ddel.v1"
        logger.debug("%s %s %s", method, resource, body if body is not None else "")
        try:
            async with session.request(
                method, url, json=body, headers=headers, timeout=self._timeout
            ) as response:
                if self._https:
                    self.check_response_certificate(response)
                text = await response.text()
                logger.debug("%s %s: %d %s", method, resource, response.status, text)
                return response.status, text
        except asyncio.TimeoutError as exc:
            raise TransportError(
                "timeout", method=method, resource=resource, transient=True
            ) from exc
        except aiohttp.ClientError as exc:
            raise TransportError(
                str(exc) or type(exc).__name__,
                method=method,
                resource=resource,
                transient=_is_connection_reset(exc),
            ) from exc

    @staticmethod
    def _parse_json(text: str, method: str, resource: str) -> Any:
        try:
            return json.loads(text)
        except ValueError as exc:
            raise ProtocolError(
                "%s %s: invalid json: %s" % (method, resource, exc)
            ) from exc

    @staticmethod
    def _check_response(method: str, resource: str, response: Any) -> Any:
        if not isinstance(response, list):
            return response
        errors: List[ApiError] = []
        for entry in response:
            if not isinstance(entry, dict) or "error" not in entry:
                continue
            error = ApiError.from_entry(entry["error"])
            if error.transient or error.critical:
                raise error
            errors.append(error)
        for error in errors:
            logger.warning("%s %s: %s", method, resource, error)
        return response
