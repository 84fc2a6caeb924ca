"""
Utilities for loading configuration data and configuring logging.

Configuration throughout this package is handled as plain (nested) dictionaries; components
take a ``config`` dictionary at construction and look up the parameters they support.
"""
import os, json, logging
from collections.abc import Mapping
from copy import deepcopy

import yaml

from .exceptions import ConfigurationException

__all__ = [ "ConfigurationException", "load_from_file", "merge_config", "configure_log",
            "DEF_LOG_FORMAT", "NORMAL" ]

DEF_LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"
NORMAL = logging.INFO

global_logfile = None
_log_handlers = {}

def load_from_file(configfile: str) -> dict:
    """
    read the configuration from the given file and return it as a dictionary.  The file
    format is determined by its extension: ".json" for JSON and ".yml" or ".yaml" for YAML.

    :raises ConfigurationException:  if the file cannot be read or parsed
    """
    ext = os.path.splitext(configfile)[1].lower()
    try:
        with open(configfile) as fd:
            if ext == ".json":
                out = json.load(fd)
            elif ext in (".yml", ".yaml"):
                out = yaml.safe_load(fd)
            else:
                raise ConfigurationException("%s: unrecognized configuration file format (extension)"
                                             % configfile)
    except OSError as ex:
        raise ConfigurationException("%s: unable to read config file: %s" % (configfile, str(ex)),
                                     cause=ex)
    except (ValueError, yaml.YAMLError) as ex:
        raise ConfigurationException("%s: config file not parseable: %s" % (configfile, str(ex)),
                                     cause=ex)

    if out is None:
        out = {}
    if not isinstance(out, Mapping):
        raise ConfigurationException("%s: config file does not contain a dictionary" % configfile)
    return out

def merge_config(primary: Mapping, defconf: Mapping) -> dict:
    """
    do a deep merge of two configuration dictionaries, returning the result as a new
    dictionary.  Values in the primary configuration override those in the default one;
    where both values are dictionaries, they are merged recursively.  Neither input is
    modified.
    """
    out = deepcopy(dict(defconf or {}))
    for key, val in (primary or {}).items():
        if isinstance(val, Mapping) and isinstance(out.get(key), Mapping):
            out[key] = merge_config(val, out[key])
        else:
            out[key] = deepcopy(val)
    return out

def configure_log(logfile: str=None, level: int=None, format: str=None, config: Mapping=None,
                  addstderr: bool=False) -> logging.Logger:
    """
    attach a handler to the root logger that sends messages to a log file (or, if no
    file is given, to standard error).  Calling this more than once with the same file has
    no additional effect.

    :param str logfile:   the path of the file to write to; a relative path is interpreted
                          relative to the ``logdir`` config parameter if set.
    :param int   level:   the minimum level of messages to record (default: ``loglevel``
                          from the config or INFO)
    :param str  format:   the log record format (default: ``logformat`` or DEF_LOG_FORMAT)
    :param dict config:   the configuration that can provide ``logfile``, ``logdir``,
                          ``loglevel``, and ``logformat``
    :return: the root Logger
    """
    global global_logfile
    if config is None:
        config = {}
    if not logfile:
        logfile = config.get('logfile')
    if level is None:
        level = config.get('loglevel', NORMAL)
    if isinstance(level, str):
        lev = logging.getLevelName(level.upper())
        if not isinstance(lev, int):
            raise ConfigurationException("Not a recognized log level: " + level)
        level = lev
    if not format:
        format = config.get('logformat', DEF_LOG_FORMAT)

    rootlog = logging.getLogger()
    if logfile:
        if not os.path.isabs(logfile) and config.get('logdir'):
            logfile = os.path.join(config['logdir'], logfile)
        key = os.path.abspath(logfile)
        if key not in _log_handlers:
            hdlr = logging.FileHandler(logfile)
            hdlr.setFormatter(logging.Formatter(format))
            hdlr.setLevel(level)
            rootlog.addHandler(hdlr)
            _log_handlers[key] = hdlr
        global_logfile = logfile

    if addstderr or not logfile:
        if '<stderr>' not in _log_handlers:
            hdlr = logging.StreamHandler()
            hdlr.setFormatter(logging.Formatter(format))
            hdlr.setLevel(level)
            rootlog.addHandler(hdlr)
            _log_handlers['<stderr>'] = hdlr

    if rootlog.level == logging.NOTSET or rootlog.level > level:
        rootlog.setLevel(level)
    return rootlog
