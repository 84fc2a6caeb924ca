"""
The registry of repository configurations.

Each repository that deposits can be made to is described by a :py:class:`RepositoryConfig`
registered under a unique key.  A configuration says how to reach the repository (its
:py:class:`TransportConfig`) and how to package content for it (its
:py:class:`AssemblerConfig`).  The registry is loaded once at start-up and is read-only
thereafter, so it can be shared freely across worker threads.

A registry can be loaded from a dictionary, a list, or a YAML or JSON file with content like
this:

.. code-block:: yaml

   repositories:
     RepoA:
       transport:
         protocol: sword
         endpoint: https://repo-a.example.org/swordv2/collection/1
         timeout: 30
         auth:
           - host: repo-a.example.org
             username: depositor
             password: ${REPOA_PASSWORD}
         options:
           on_behalf_of: pass
       assembler:
         spec: http://purl.org/net/sword/package/SimpleZip
         options:
           archive: zip
           compression: none
           checksums: []
       deposit_status:
         resolver: atom-statement
         states:
           http://dspace.org/state/withdrawn: rejected

The optional ``deposit_status`` section says how to learn the repository's decision about a
delivered deposit (see :py:mod:`passdeposit.transport.statement`); without it, a delivered
deposit is considered accepted.

String values may include ``${NAME}`` references which are resolved against a property
dictionary (by default, the process environment); references with no value are left as is.
"""
import os, string, logging
from collections.abc import Mapping
from copy import deepcopy
from types import MappingProxyType
from typing import Iterable, Union
from urllib.parse import urlsplit

from .exceptions import ConfigurationException, RepositoryNotFound
from .config import load_from_file
from .package import PackagingError
from .package.options import AssemblerOptions
from .transport import binding_for, ProtocolBinding
from .transport.statement import resolver_for

class AuthRealm(object):
    """
    a set of credentials to use with a particular host (and, optionally, named realm)
    """

    def __init__(self, host: str, username: str, password: str, realm: str=None):
        self._host = (host or "").lower()
        self._user = username
        self._pass = password
        self._realm = realm

    @property
    def host(self):
        return self._host

    @property
    def username(self):
        return self._user

    @property
    def password(self):
        return self._pass

    @property
    def realm(self):
        return self._realm

    def matches(self, url: str, realm: str=None) -> bool:
        """
        return True if these credentials should be used with the given URL (and realm)
        """
        host = (urlsplit(url).hostname or "").lower()
        if host != self._host:
            return False
        return realm is None or self._realm is None or realm == self._realm

    def __repr__(self):
        # never show the password
        return "AuthRealm(%r, %r, realm=%r)" % (self._host, self._user, self._realm)

class TransportConfig(object):
    """
    the information needed to transmit packages to a repository
    """

    def __init__(self, protocol: str, binding: ProtocolBinding, endpoints: Mapping,
                 auth: Iterable[AuthRealm]=None, options: Mapping=None, timeout: float=None):
        """
        :param str          protocol:  the name of the protocol binding
        :param ProtocolBinding binding: the binding that implements the protocol
        :param dict        endpoints:  named URLs of the repository's service endpoints; the
                                       one named "default" (or else the first) is the
                                       deposit target
        :param list             auth:  the credentials for the hosts the endpoints refer to
        :param dict          options:  protocol-specific options
        :param float         timeout:  the time limit for network operations, in seconds
        """
        if not endpoints:
            raise ConfigurationException("TransportConfig: at least one endpoint is required")
        self._protocol = protocol
        self._binding = binding
        self._endpoints = MappingProxyType(dict(endpoints))
        self._auth = tuple(auth or [])
        self._options = MappingProxyType(deepcopy(dict(options or {})))
        self._timeout = timeout

    @property
    def protocol(self):
        return self._protocol

    @property
    def binding(self):
        return self._binding

    @property
    def endpoints(self):
        return self._endpoints

    @property
    def endpoint(self):
        """
        the URL that packages are deposited to
        """
        if 'default' in self._endpoints:
            return self._endpoints['default']
        return next(iter(self._endpoints.values()))

    @property
    def auth(self):
        return self._auth

    @property
    def options(self):
        return self._options

    @property
    def timeout(self):
        """
        the configured time limit for network operations, or None if one was not configured
        """
        return self._timeout

    def credentials_for(self, url: str, realm: str=None) -> AuthRealm:
        """
        return the credentials to use with the given URL, or None if none are configured
        """
        for creds in self._auth:
            if creds.matches(url, realm):
                return creds
        return None

class AssemblerConfig(object):
    """
    the packaging requirements for a repository
    """

    def __init__(self, spec: str, options: AssemblerOptions):
        self._spec = spec
        self._options = options

    @property
    def spec(self):
        return self._spec

    @property
    def options(self):
        return self._options

class RepositoryConfig(object):
    """
    the full description of a repository that can receive deposits
    """

    def __init__(self, key: str, transport: TransportConfig, assembler: AssemblerConfig,
                 status_resolver=None):
        """
        :param str                key:  the repository's unique key
        :param TransportConfig transport:  how to reach the repository
        :param AssemblerConfig assembler:  how to package content for the repository
        :param status_resolver:  an object whose ``resolve(status_ref, transport_config)``
                                 method reports the repository's decision on a delivered
                                 deposit; if None, a delivered deposit is taken as accepted.
        """
        self._key = key
        self._transport = transport
        self._assembler = assembler
        self._resolver = status_resolver

    @property
    def key(self):
        return self._key

    @property
    def transport(self):
        return self._transport

    @property
    def assembler(self):
        return self._assembler

    @property
    def status_resolver(self):
        return self._resolver

    def __repr__(self):
        return "RepositoryConfig(%r, protocol=%r)" % (self._key, self._transport.protocol)

def _resolve(value, props):
    if isinstance(value, str):
        return string.Template(value).safe_substitute(props)
    if isinstance(value, Mapping):
        return dict((k, _resolve(v, props)) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return [_resolve(v, props) for v in value]
    return value

def _realm_from(key, data):
    if not isinstance(data, Mapping):
        raise ConfigurationException("%s: auth realm must be a dictionary" % key)
    host = data.get('host')
    if not host and data.get('url'):
        host = urlsplit(data['url']).hostname
    if not host:
        raise ConfigurationException("%s: auth realm is missing a host" % key)
    if not data.get('username'):
        raise ConfigurationException("%s: auth realm for %s is missing a username" % (key, host))
    return AuthRealm(host, data['username'], data.get('password'), data.get('realm'))

def _transport_from(key, data):
    if not isinstance(data, Mapping):
        raise ConfigurationException("%s: missing or malformed transport configuration" % key)

    protocol = data.get('protocol')
    if not protocol and isinstance(data.get('protocol-binding'), Mapping):
        protocol = data['protocol-binding'].get('protocol')
    if not protocol:
        raise ConfigurationException("%s: transport protocol not specified" % key)
    protocol = protocol.lower()
    binding = binding_for(protocol)

    endpoints = data.get('endpoints')
    if endpoints is None and data.get('endpoint'):
        endpoints = { 'default': data['endpoint'] }
    if not isinstance(endpoints, Mapping) or not endpoints:
        raise ConfigurationException("%s: transport endpoint not specified" % key)
    bad = [n for n, u in endpoints.items() if not isinstance(u, str) or not urlsplit(u).netloc]
    if bad:
        raise ConfigurationException("%s: malformed endpoint URL(s): %s" % (key, ", ".join(bad)))

    auth = data.get('auth', data.get('auth-realms', []))
    if isinstance(auth, Mapping):
        auth = [auth]
    if not isinstance(auth, (list, tuple)):
        raise ConfigurationException("%s: auth must be a list of realms" % key)
    auth = [_realm_from(key, a) for a in auth]

    options = data.get('options', {})
    if not isinstance(options, Mapping):
        raise ConfigurationException("%s: transport options must be a dictionary" % key)

    timeout = data.get('timeout')
    if timeout is not None:
        try:
            timeout = float(timeout)
        except (TypeError, ValueError):
            raise ConfigurationException("%s: transport timeout is not a number: %s" % (key, timeout))
        if timeout <= 0:
            raise ConfigurationException("%s: transport timeout must be positive" % key)

    tc = TransportConfig(protocol, binding, endpoints, auth, options, timeout)
    try:
        binding.check_config(tc)
    except ConfigurationException as ex:
        raise ConfigurationException("%s: %s" % (key, str(ex)), cause=ex)
    return tc

def _assembler_from(key, data):
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigurationException("%s: assembler configuration must be a dictionary" % key)
    spec = data.get('spec', data.get('specification'))
    opts = dict(data.get('options') or {})
    if spec and not opts.get('spec') and not opts.get('specification'):
        opts['spec'] = spec
    try:
        options = AssemblerOptions.from_config(opts)
    except PackagingError as ex:
        raise ConfigurationException("%s: %s" % (key, str(ex)), cause=ex)
    return AssemblerConfig(options.spec, options)

def _resolver_from(key, data):
    if data is None:
        return None
    if not isinstance(data, Mapping):
        raise ConfigurationException("%s: deposit status configuration must be a dictionary" % key)
    try:
        return resolver_for(data)
    except ConfigurationException as ex:
        raise ConfigurationException("%s: %s" % (key, str(ex)), cause=ex)

def _repository_from(key, data):
    if not key or not isinstance(key, str):
        raise ConfigurationException("Repository key must be a non-empty string: " + repr(key))
    if not isinstance(data, Mapping):
        raise ConfigurationException("%s: repository configuration must be a dictionary" % key)
    tdata = data.get('transport', data.get('transport-config'))
    sdata = data.get('deposit_status', data.get('deposit-processing'))
    return RepositoryConfig(key, _transport_from(key, tdata), _assembler_from(key, data.get('assembler')),
                            _resolver_from(key, sdata))

class RepositoryConfigRegistry(object):
    """
    a read-only registry of repository configurations, keyed by repository key.  Instances
    are normally created with :py:meth:`load`.
    """

    def __init__(self, configs: Iterable[RepositoryConfig]=()):
        cfgs = {}
        for cfg in configs:
            if cfg.key in cfgs:
                raise ConfigurationException("Duplicate repository key: " + cfg.key)
            cfgs[cfg.key] = cfg
        self._configs = MappingProxyType(cfgs)

    @classmethod
    def load(cls, source: Union[str, Mapping, list], properties: Mapping=None):
        """
        create a registry from configuration data.

        :param source:  the configuration data: either a dictionary mapping repository keys
                        to their configurations, a list of configurations each including a
                        ``key`` property, or the path to a YAML or JSON file containing either
                        of these.  The data may be wrapped in a dictionary under the property
                        ``repositories``.
        :param dict properties:  values for ``${NAME}`` references appearing in configuration
                        strings (default: the process environment)
        :raises ConfigurationException:  if any entry is malformed or a key is registered more
                        than once; no registry is created in this case.
        """
        if isinstance(source, str):
            source = load_from_file(source)
        if isinstance(source, Mapping) and 'repositories' in source:
            source = source['repositories']
        if properties is None:
            properties = os.environ

        if isinstance(source, Mapping):
            entries = list(source.items())
        elif isinstance(source, (list, tuple)):
            entries = []
            for item in source:
                if not isinstance(item, Mapping) or not item.get('key'):
                    raise ConfigurationException("Repository configuration entry is missing a key")
                entries.append((item['key'], item))
        else:
            raise ConfigurationException("Repository configuration must be a dictionary or list")

        seen = set()
        configs = []
        for key, data in entries:
            if key in seen:
                raise ConfigurationException("Duplicate repository key: " + str(key))
            seen.add(key)
            configs.append(_repository_from(key, _resolve(data, properties)))

        return cls(configs)

    def get_config(self, key: str) -> RepositoryConfig:
        """
        return the configuration registered with the given key
        :raises RepositoryNotFound:  if no configuration is registered with that key
        """
        try:
            return self._configs[key]
        except KeyError:
            raise RepositoryNotFound(key)

    def find_config(self, key: str) -> RepositoryConfig:
        """
        return the configuration registered with the given key or None if there is none
        """
        return self._configs.get(key)

    def keys(self):
        """
        return the set of registered repository keys
        """
        return frozenset(self._configs.keys())

    def __contains__(self, key):
        return key in self._configs

    def __len__(self):
        return len(self._configs)
