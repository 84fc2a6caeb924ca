"""
Support for assembling deposit packages: archive files containing a submission's custodial
files, a serialization of its metadata, and a checksum manifest.

The main entry point is :py:class:`~passdeposit.package.assembler.PackageAssembler`, configured
per repository with :py:class:`~passdeposit.package.options.AssemblerOptions`.
"""
from ..exceptions import DepositException
from .. import DepositSystem

system = DepositSystem("Package Assembly", "pkg")

# causes of packaging failures
IO_FAILURE             = "io"
UNSUPPORTED_OPTIONS    = "unsupported_options"
METADATA_SERIALIZATION = "metadata_serialization"
_causes = (IO_FAILURE, UNSUPPORTED_OPTIONS, METADATA_SERIALIZATION)

class PackagingError(DepositException):
    """
    an exception indicating that a deposit package could not be assembled.  The
    :py:attr:`cause_type` property indicates why:

    ``io``
        reading a custodial file or writing the package failed; this may succeed if retried.
    ``unsupported_options``
        the requested combination of packaging options (or the submission's content) cannot
        be packaged as requested; retrying will not help.
    ``metadata_serialization``
        the submission metadata could not be serialized into the package.
    """

    def __init__(self, message, cause_type=IO_FAILURE, submission=None, cause=None):
        if cause_type not in _causes:
            raise ValueError("PackagingError: unrecognized cause type: " + str(cause_type))
        if submission:
            message = "%s: %s" % (submission, message)
        super(PackagingError, self).__init__(message, cause, sys=system)
        self.cause_type = cause_type
        self.submission = submission

    @property
    def retryable(self):
        """
        True if the failure might not recur if the packaging is attempted again
        """
        return self.cause_type == IO_FAILURE

from .options import AssemblerOptions
from .assembler import PackageAssembler, PackageStream
