"""
Utility logging functions
"""
import logging, time
from functools import wraps

BLAB = logging.DEBUG - 1

def blab(log, msg, *args, **kwargs):
    """
    log a verbose message. This uses a log level, BLAB, that is lower than
    DEBUG; in other words when a log's level is set to DEBUG, this message
    will not be displayed.  This is intended for messages that would appear
    voluminously if the level were set to BLAB.

    :param Logger log:  the Logger object to record to
    :param str    msg:  the message to write
    :param args:        treat msg as a template and insert these values
    :param kwargs:      other arbitrary keywords to pass to log.log()
    """
    log.log(BLAB, msg, *args, **kwargs)

def _context_str(context):
    return ", ".join("%s=%s" % (k, v) for k, v in context.items() if v is not None)

def logged(log, what, **context):
    """
    return a decorator that wraps a function call with log messages: one before the call,
    one after it returns (with its elapsed time), and one if it raises an exception (which
    is re-raised).  The keyword arguments provide context (e.g. the entity identifier) that
    gets included in each message.

    Example:
    .. code-block:: python

       receipt = logged(log, "deposit", deposit=depid, repository=key)(transmit)(pkg)

    :param Logger log:  the Logger to send messages to
    :param str   what:  a short label for the operation being wrapped
    :param context:     name-value pairs to include in each message
    """
    ctxt = _context_str(context)
    if ctxt:
        ctxt = " (" + ctxt + ")"

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            log.info("Starting %s%s", what, ctxt)
            start = time.time()
            try:
                out = func(*args, **kwargs)
            except Exception as ex:
                log.warning("%s failed after %.2f s%s: %s", what, time.time() - start, ctxt, str(ex))
                raise
            log.info("Completed %s in %.2f s%s", what, time.time() - start, ctxt)
            return out
        return wrapper

    return decorator
