"""
A protocol binding that delivers packages to a repository by uploading them to an FTP server.

The transport configuration's endpoint is an FTP URL of the form
``ftp://host[:port]/path/to/dir``; packages are written into the given directory.  A package
is first uploaded under a temporary name and then renamed to its final name, so a partial
upload never appears under the final name.

The binding looks for the following transport ``options``:

``passive``
    (*bool*) whether to use passive mode data connections (default: True)
``create_dir``
    (*bool*) whether to create the target directory if it does not exist (default: False)
``directory``
    (*str*) the target directory, overriding the path in the endpoint URL
``tmp_suffix``
    (*str*) the suffix appended to a package's name while it is being uploaded
    (default: ".part")
"""
import ftplib, socket, logging
from urllib.parse import urlsplit

from . import (ProtocolBinding, Receipt, TransportError, AUTH_FAILURE, CONNECTION_FAILURE,
               REMOTE_REJECTED, TIMEOUT, UNKNOWN_OUTCOME, DEF_TIMEOUT, system as _sys)
from ..exceptions import ConfigurationException

DEF_PORT = 21
DEF_TMP_SUFFIX = ".part"

class FtpBinding(ProtocolBinding):
    """
    a :py:class:`~passdeposit.transport.ProtocolBinding` that uploads a package to a directory
    on an FTP server.  If a file with the package's name and size already exists there, the
    package is taken to have been delivered by an earlier attempt and is not uploaded again.
    """

    protocol = "ftp"

    def __init__(self, log: logging.Logger=None):
        if not log:
            log = logging.getLogger(_sys.system_abbrev).getChild(_sys.subsystem_abbrev) \
                                                           .getChild("ftp")
        self.log = log

    def _target(self, transport_config):
        url = transport_config.endpoint
        parts = urlsplit(url)
        if parts.scheme and parts.scheme != "ftp":
            raise ConfigurationException("Not an FTP URL: " + url)
        if not parts.hostname:
            raise ConfigurationException("FTP endpoint is missing a host name: " + url)
        dir = transport_config.options.get('directory') or parts.path or "/"
        return url, parts.hostname, parts.port or DEF_PORT, dir

    def check_config(self, transport_config):
        self._target(transport_config)

    def _open(self, transport_config, timeout):
        url, host, port, dir = self._target(transport_config)
        options = transport_config.options

        ftp = ftplib.FTP(timeout=timeout)
        try:
            ftp.connect(host, port)
        except socket.timeout as ex:
            raise TransportError(TIMEOUT, "Timed out connecting to %s: %s" % (url, str(ex)),
                                 self.protocol, url, cause=ex)
        except (OSError, ftplib.Error) as ex:
            raise TransportError(CONNECTION_FAILURE, "Unable to connect to %s: %s" % (url, str(ex)),
                                 self.protocol, url, cause=ex)

        try:
            try:
                creds = transport_config.credentials_for(url)
                if creds:
                    ftp.login(creds.username, creds.password)
                else:
                    ftp.login()
            except ftplib.error_perm as ex:
                raise TransportError(AUTH_FAILURE, "Login to %s refused: %s" % (url, str(ex)),
                                     self.protocol, url, cause=ex)

            ftp.set_pasv(bool(options.get('passive', True)))
            self._chdir(ftp, dir, options.get('create_dir', False), url)
            ftp.voidcmd("TYPE I")

        except TransportError:
            self._close(ftp)
            raise
        except socket.timeout as ex:
            self._close(ftp)
            raise TransportError(TIMEOUT, "Timed out setting up session with %s: %s" %
                                 (url, str(ex)), self.protocol, url, cause=ex)
        except (OSError, ftplib.Error, EOFError) as ex:
            self._close(ftp)
            raise TransportError(CONNECTION_FAILURE, "Failed to set up session with %s: %s" %
                                 (url, str(ex)), self.protocol, url, cause=ex)

        return ftp, url, dir

    def _chdir(self, ftp, dir, create, url):
        if dir.startswith('/'):
            ftp.cwd('/')
        for part in [p for p in dir.split('/') if p]:
            try:
                ftp.cwd(part)
            except ftplib.error_perm as ex:
                if not create:
                    raise TransportError(REMOTE_REJECTED, "Target directory not available on %s: %s" %
                                         (url, str(ex)), self.protocol, url, cause=ex)
                self.log.info("Creating directory %s on %s", part, url)
                ftp.mkd(part)
                ftp.cwd(part)

    def _close(self, ftp):
        try:
            ftp.quit()
        except (OSError, ftplib.Error, EOFError) as ex:
            self.log.debug("Problem closing FTP session: %s", str(ex))
            ftp.close()

    def _remote_size(self, ftp, name):
        try:
            return ftp.size(name)
        except ftplib.error_perm as ex:
            if str(ex).startswith("550"):
                return None
            raise

    def _location(self, url, dir, name):
        parts = urlsplit(url)
        netloc = parts.hostname
        if parts.port:
            netloc += ":%d" % parts.port
        return "ftp://%s/%s/%s" % (netloc, dir.strip('/'), name) if dir.strip('/') \
               else "ftp://%s/%s" % (netloc, name)

    def submit(self, package, transport_config, timeout: float=None) -> Receipt:
        if timeout is None:
            timeout = transport_config.timeout or DEF_TIMEOUT
        tmpname = package.name + transport_config.options.get('tmp_suffix', DEF_TMP_SUFFIX)

        ftp, url, dir = self._open(transport_config, timeout)
        try:
            loc = self._location(url, dir, package.name)

            # stage 1: check for and upload the package under a temporary name
            try:
                size = self._remote_size(ftp, package.name)
                if size is not None and size == package.length:
                    self.log.info("%s already present at %s; skipping upload", package.name, loc)
                    package.discard()
                    return Receipt(loc, self.protocol, 213, "already present")

                self.log.debug("Uploading %s (%s bytes) to %s", package.name, package.length, url)
                body = package.open(interruptible=True)
                try:
                    ftp.storbinary("STOR " + tmpname, body)
                finally:
                    body.close()

                resp = ftp.sendcmd("RNFR " + tmpname)
                if resp[:1] != '3':
                    raise ftplib.error_reply(resp)

            except ftplib.error_perm as ex:
                raise TransportError(REMOTE_REJECTED, "Upload of %s refused by %s: %s" %
                                     (package.name, url, str(ex)), self.protocol, url,
                                     response=str(ex), cause=ex)
            except socket.timeout as ex:
                raise TransportError(TIMEOUT, "Timed out uploading %s to %s: %s" %
                                     (package.name, url, str(ex)), self.protocol, url, cause=ex)
            except (OSError, ftplib.Error, EOFError) as ex:
                raise TransportError(CONNECTION_FAILURE, "Failed to upload %s to %s: %s" %
                                     (package.name, url, str(ex)), self.protocol, url, cause=ex)

            # stage 2: rename to the final name; once sent, we cannot be sure it did not happen
            try:
                resp = ftp.voidcmd("RNTO " + package.name)
            except (OSError, ftplib.Error, EOFError) as ex:
                raise TransportError(UNKNOWN_OUTCOME, "Failed to complete delivery of %s to %s: %s" %
                                     (package.name, url, str(ex)), self.protocol, url, cause=ex)

            self.log.info("Deposited %s to %s", package.name, loc)
            return Receipt(loc, self.protocol, int(resp[:3]) if resp[:3].isdigit() else None, resp)

        finally:
            self._close(ftp)

    def verify(self, package_name: str, transport_config, timeout: float=None):
        if timeout is None:
            timeout = transport_config.timeout or DEF_TIMEOUT
        try:
            ftp, url, dir = self._open(transport_config, timeout)
        except TransportError as ex:
            self.log.warning("Unable to verify delivery of %s: %s", package_name, str(ex))
            return None

        try:
            return ftp.size(package_name) is not None
        except ftplib.error_perm as ex:
            if str(ex).startswith("550"):
                return False
            self.log.warning("Unable to verify delivery of %s: %s", package_name, str(ex))
            return None
        except (OSError, ftplib.Error, EOFError) as ex:
            self.log.warning("Unable to verify delivery of %s: %s", package_name, str(ex))
            return None
        finally:
            self._close(ftp)
