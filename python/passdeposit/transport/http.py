"""
A protocol binding that delivers packages to a repository by POSTing them over HTTP, following
the SWORD v2 deposit conventions.

The binding looks for the following transport ``options``:

``headers``
    (*dict*) additional HTTP headers to send with each deposit
``on_behalf_of``
    (*str*) the user the deposit is made on behalf of (sent as the ``On-Behalf-Of`` header)
``packaging``
    (*str*) the package specification identifier to send in the ``Packaging`` header if the
    package itself does not name one
``verify_tls``
    (*bool*) whether to verify the server's TLS certificate (default: True)
"""
import logging
from urllib.parse import urlsplit

import requests
from urllib3.exceptions import ProtocolError

from . import (ProtocolBinding, Receipt, TransportError, AUTH_FAILURE, CONNECTION_FAILURE,
               REMOTE_REJECTED, TIMEOUT, UNKNOWN_OUTCOME, DEF_TIMEOUT, system as _sys)
from .statement import find_statement_link
from ..exceptions import ConfigurationException

DEF_PACKAGING = "http://purl.org/net/sword/package/Binary"

class SwordHttpBinding(ProtocolBinding):
    """
    a :py:class:`~passdeposit.transport.ProtocolBinding` that POSTs a package as the body of an
    HTTP request to a SWORD collection URL (the transport configuration's endpoint).  A 2xx
    response is taken as acceptance; the ``Location`` response header (or the collection URL
    if absent) becomes the receipt's location.  If the response body is a deposit receipt
    that links to a statement, the statement's URL becomes the receipt's ``status_ref``.
    """

    protocol = "sword"

    def __init__(self, log: logging.Logger=None):
        if not log:
            log = logging.getLogger(_sys.system_abbrev).getChild(_sys.subsystem_abbrev) \
                                                           .getChild("http")
        self.log = log

    def _headers_for(self, package, options):
        hdrs = {
            "Content-Type":        package.media_type or "application/octet-stream",
            "Content-Disposition": "attachment; filename=" + package.name,
            "Packaging":           package.spec or options.get('packaging', DEF_PACKAGING),
            "In-Progress":         "false",
            "Slug":                package.name
        }
        if package.checksums.get('md5'):
            hdrs["Content-MD5"] = package.checksums['md5']
        if package.length is not None:
            hdrs["Content-Length"] = str(package.length)
        if options.get('on_behalf_of'):
            hdrs["On-Behalf-Of"] = options['on_behalf_of']
        hdrs.update(options.get('headers') or {})
        return hdrs

    def check_config(self, transport_config):
        for name, url in transport_config.endpoints.items():
            parts = urlsplit(url)
            if parts.scheme not in ("http", "https") or not parts.hostname:
                raise ConfigurationException("Not an HTTP URL (%s): %s" % (name, url))

    def submit(self, package, transport_config, timeout: float=None) -> Receipt:
        url = transport_config.endpoint
        if timeout is None:
            timeout = transport_config.timeout or DEF_TIMEOUT
        options = transport_config.options
        hdrs = self._headers_for(package, options)

        authkw = {}
        creds = transport_config.credentials_for(url)
        if creds:
            authkw['auth'] = (creds.username, creds.password)

        self.log.debug("POSTing %s (%s bytes) to %s", package.name, package.length, url)
        body = package.open(interruptible=True)
        try:
            resp = requests.post(url, data=body, headers=hdrs, timeout=timeout,
                                 verify=options.get('verify_tls', True), **authkw)
        except requests.exceptions.ConnectTimeout as ex:
            raise TransportError(TIMEOUT, "Timed out connecting to %s: %s" % (url, str(ex)),
                                 self.protocol, url, cause=ex)
        except requests.exceptions.ReadTimeout as ex:
            raise TransportError(UNKNOWN_OUTCOME, "Timed out waiting for a response from %s: %s" %
                                 (url, str(ex)), self.protocol, url, cause=ex)
        except requests.exceptions.ChunkedEncodingError as ex:
            raise TransportError(UNKNOWN_OUTCOME, "Response from %s was cut off: %s" %
                                 (url, str(ex)), self.protocol, url, cause=ex)
        except requests.exceptions.ConnectionError as ex:
            if ex.args and isinstance(ex.args[0], ProtocolError):
                # the connection was established and then dropped
                raise TransportError(UNKNOWN_OUTCOME, "Connection to %s dropped: %s" %
                                     (url, str(ex)), self.protocol, url, cause=ex)
            raise TransportError(CONNECTION_FAILURE, "Unable to connect to %s: %s" %
                                 (url, str(ex)), self.protocol, url, cause=ex)
        except requests.RequestException as ex:
            raise TransportError(CONNECTION_FAILURE, "Failed to send request to %s: %s" %
                                 (url, str(ex)), self.protocol, url, cause=ex)
        finally:
            body.close()

        if resp.status_code in (401, 403):
            raise TransportError(AUTH_FAILURE, "Authentication failed at %s: %s %s" %
                                 (url, resp.status_code, resp.reason), self.protocol, url,
                                 response=resp.text)
        if resp.status_code < 200 or resp.status_code >= 300:
            raise TransportError(REMOTE_REJECTED, "Deposit rejected by %s: %s %s" %
                                 (url, resp.status_code, resp.reason), self.protocol, url,
                                 response=resp.text)

        loc = resp.headers.get('Location') or url
        self.log.info("Deposited %s to %s (status %s)", package.name, loc, resp.status_code)
        return Receipt(loc, self.protocol, resp.status_code, resp.text,
                       find_statement_link(resp.text))

    def verify(self, package_name: str, transport_config, timeout: float=None):
        # a SWORD collection offers no way to look up a deposit by package name
        return None
