"""
Support for following a deposit through a repository's own review workflow.

A SWORD v2 repository answers a successful deposit with a receipt (an Atom entry) that links
to a *statement*: an Atom feed describing the deposit's current state within the repository.
An :py:class:`AtomStatementResolver` retrieves a statement and translates the repository's
state into a :py:class:`~passdeposit.status.DepositStatus`: ACCEPTED once the repository has
archived the deposit, REJECTED if it was withdrawn, or None while no decision has been made.
"""
import logging
from collections.abc import Mapping

import requests
from lxml import etree

from . import DEF_TIMEOUT, system as _sys
from ..exceptions import DepositException, ConfigurationException
from ..status import DepositStatus, to_deposit_status

ATOM_NS = "http://www.w3.org/2005/Atom"
STATEMENT_REL = "http://purl.org/net/sword/terms/statement"
STATE_SCHEME = "http://purl.org/net/sword/terms/state"

DEF_STATES = {
    "http://dspace.org/state/archived":   DepositStatus.ACCEPTED,
    "http://dspace.org/state/withdrawn":  DepositStatus.REJECTED,
    "http://dspace.org/state/inprogress": None,
    "http://dspace.org/state/inreview":   None
}
DECISIONS = frozenset([DepositStatus.ACCEPTED, DepositStatus.REJECTED])

class StatementError(DepositException):
    """
    an exception indicating that a deposit's statement could not be retrieved or understood
    """

    def __init__(self, message, ref=None, cause=None):
        super(StatementError, self).__init__(message, cause, sys=_sys)
        self.ref = ref

def _parse(content):
    if isinstance(content, str):
        content = content.encode('utf-8')
    if not isinstance(content, bytes) or not content.strip():
        return None
    try:
        return etree.fromstring(content)
    except (etree.XMLSyntaxError, ValueError):
        return None

def find_statement_link(content) -> str:
    """
    return the URL of the statement linked from a SWORD deposit receipt, or None if the
    receipt does not link one (or is not parseable XML).  A link to the Atom form of the
    statement is preferred.

    :param content:  the deposit receipt, as a str or bytes
    """
    root = _parse(content)
    if root is None:
        return None
    links = [l for l in root.iter("{%s}link" % ATOM_NS)
             if l.get('rel') == STATEMENT_REL and l.get('href')]
    if not links:
        return None
    for link in links:
        if 'atom' in (link.get('type') or ''):
            return link.get('href')
    return links[0].get('href')

def read_states(content) -> list:
    """
    return the state terms asserted by a SWORD statement, in document order.  States
    asserted on the feed itself are listed ahead of any asserted on its entries.

    :param content:  the statement, as a str or bytes
    :raises StatementError:  if the content is not parseable XML
    """
    root = _parse(content)
    if root is None:
        raise StatementError("Statement is not parseable XML")
    cat = "{%s}category" % ATOM_NS
    top = [c for c in root.findall(cat) if c.get('scheme') == STATE_SCHEME]
    rest = [c for c in root.iter(cat) if c.get('scheme') == STATE_SCHEME and c not in top]
    return [c.get('term') for c in top + rest if c.get('term')]

class AtomStatementResolver(object):
    """
    a resolver of deposit status from a SWORD v2 Atom statement.  Credentials for retrieving
    the statement are taken from the repository's transport configuration.

    This class looks for the following configuration parameters:

    ``states``
        (*dict*) a mapping of state terms to deposit statuses ("accepted" or "rejected"; a
        null value means the state carries no decision).  These are added to (and override)
        the built-in mapping of DSpace workflow states.
    ``timeout``
        (*float*) the time limit, in seconds, for retrieving a statement (default: the
        transport configuration's timeout or 60)
    ``verify_tls``
        (*bool*) whether to verify the server's TLS certificate (default: True)
    """

    def __init__(self, config: Mapping=None, log: logging.Logger=None):
        """
        :raises ConfigurationException:  if the configuration contains illegal values
        """
        if config is None:
            config = {}
        self.cfg = config
        if not log:
            log = logging.getLogger(_sys.system_abbrev).getChild(_sys.subsystem_abbrev) \
                                                           .getChild("statement")
        self.log = log

        self.states = dict(DEF_STATES)
        states = self.cfg.get('states') or {}
        if not isinstance(states, Mapping):
            raise ConfigurationException("states: must be a dictionary")
        for term, status in states.items():
            if status:
                try:
                    status = to_deposit_status(status)
                except ValueError:
                    raise ConfigurationException("states: %s: not a deposit status: %s" %
                                                 (term, status))
                if status not in DECISIONS:
                    raise ConfigurationException("states: %s: must map to accepted or rejected"
                                                 % term)
            else:
                status = None
            self.states[term] = status

        self.timeout = self.cfg.get('timeout')
        if self.timeout is not None:
            try:
                self.timeout = float(self.timeout)
            except (TypeError, ValueError):
                raise ConfigurationException("timeout: not a number: %s" % self.timeout)

    def resolve(self, status_ref: str, transport_config=None) -> DepositStatus:
        """
        retrieve the statement at the given URL and return the deposit status it indicates.

        :param str status_ref:  the URL of the deposit's statement
        :param TransportConfig transport_config:  the repository's transport configuration,
                                used for credentials and timeouts
        :return:  DepositStatus.ACCEPTED or DepositStatus.REJECTED if the repository has made a
                  decision, or None if it has not
        :raises StatementError:  if the statement cannot be retrieved or understood
        """
        timeout = self.timeout
        if timeout is None:
            timeout = (transport_config and transport_config.timeout) or DEF_TIMEOUT

        kw = {}
        creds = transport_config.credentials_for(status_ref) if transport_config else None
        if creds:
            kw['auth'] = (creds.username, creds.password)

        try:
            resp = requests.get(status_ref, headers={"Accept": "application/atom+xml"},
                                timeout=timeout, verify=self.cfg.get('verify_tls', True), **kw)
        except requests.RequestException as ex:
            raise StatementError("Unable to retrieve statement %s: %s" % (status_ref, str(ex)),
                                 status_ref, ex)

        if resp.status_code in (401, 403):
            raise StatementError("Not authorized to retrieve statement %s: %s %s" %
                                 (status_ref, resp.status_code, resp.reason), status_ref)
        if resp.status_code < 200 or resp.status_code >= 300:
            raise StatementError("Failed to retrieve statement %s: %s %s" %
                                 (status_ref, resp.status_code, resp.reason), status_ref)

        try:
            terms = read_states(resp.content)
        except StatementError as ex:
            ex.ref = status_ref
            raise
        if not terms:
            raise StatementError("Statement %s asserts no state" % status_ref, status_ref)

        for term in terms:
            if term in self.states:
                self.log.debug("Statement %s: state %s", status_ref, term)
                return self.states[term]

        self.log.warning("Statement %s: unrecognized state(s): %s", status_ref, ", ".join(terms))
        return None

_resolvers = {
    "atom-statement": AtomStatementResolver,
    "atom":           AtomStatementResolver
}

def resolver_for(config: Mapping):
    """
    create the status resolver described by the given configuration, whose ``resolver``
    parameter names the kind of resolver (default: "atom-statement")

    :raises ConfigurationException:  if the resolver kind is not recognized or its
                                     configuration is illegal
    """
    name = (config.get('resolver') or "atom-statement").lower()
    if name not in _resolvers:
        raise ConfigurationException("Unsupported deposit status resolver: " + name)
    return _resolvers[name](config)
