"""
The assembler of deposit packages.

A :py:class:`PackageAssembler` turns a :py:class:`~passdeposit.model.Submission` into a
:py:class:`PackageStream`: a finished archive (spooled to memory or a temporary file) ready to
be transmitted once by a protocol binding.  The package contains:

* one entry per custodial file, named with the file's relative path,
* one metadata entry, a serialization of the submission's metadata, and
* one manifest entry listing each file's path, size, and checksums, sorted by path.

If assembly fails for any reason, the partially written archive is discarded; a caller never
sees an incomplete package.
"""
import os, re, io, json, string, tempfile, logging
from collections.abc import Mapping
from typing import Callable

from . import PackagingError, IO_FAILURE, UNSUPPORTED_OPTIONS, METADATA_SERIALIZATION, system as _sys
from .options import AssemblerOptions, ARCHIVE_NONE, ARCHIVE_TAR
from .archive import ArchiveWriter
from .manifest import ManifestBuilder, DigestingReader
from ..exceptions import StateException, AttemptCancelled
from ..model import Submission, CustodialFile

DEF_SPOOL_SIZE = 16 * 1024 * 1024    # keep packages up to 16 MB in memory
PACKAGE_CHECKSUMS = ("md5", "sha256")

_unsafe_re = re.compile(r'[^\w\.\-]')

def package_name_for(submission_id: str, options: AssemblerOptions, filename: str=None) -> str:
    """
    return the file name that a package for the given submission will have.  The name is
    deterministic so that a protocol binding can look for a previously transmitted copy.

    :param str submission_id:  the identifier of the submission being packaged
    :param AssemblerOptions options:  the options the package is assembled with
    :param str filename:       the name of the single custodial file (needed when the
                               options specify no archive container)
    """
    if options.archive == ARCHIVE_NONE:
        if not filename:
            raise ValueError("package_name_for(): filename required when no archive container is used")
        return os.path.basename(filename) + options.extension
    return _unsafe_re.sub('_', submission_id) + options.extension

def _check_entry_name(name):
    if name.startswith('/') or '\\' in name or '..' in name.split('/') or name.endswith('/'):
        return False
    return True

class InterruptibleReader(object):
    """
    a read-only wrapper around a package's content that refuses further reads once the attempt
    it belongs to has been cancelled.  Protocol bindings read the package in blocks as they send
    it, so a cancellation stops a transmission in progress at its next block.
    """

    def __init__(self, stream, cancelled: Callable[[], bool], length: int=None, name: str=None):
        self._src = stream
        self._cancelled = cancelled
        self._name = name or "package"
        self.len = length
        self.interrupted = False

    def read(self, size=-1):
        if self._cancelled():
            self.interrupted = True
            raise AttemptCancelled("Transmission of %s interrupted" % self._name)
        return self._src.read(size)

    @property
    def closed(self):
        return self._src.closed

    def close(self):
        self._src.close()

    def __enter__(self):
        return self

    def __exit__(self, ex_type, ex_val, ex_tb):
        self.close()
        return False

class PackageStream(object):
    """
    an assembled package, ready for transmission.  The package's bytes can be read only once
    (via :py:meth:`open`); it is discarded when the stream returned by :py:meth:`open` is
    closed or when :py:meth:`discard` is called.
    """

    def __init__(self, content, name: str, media_type: str, length: int, spec: str=None,
                 checksums: Mapping=None, entries=None, cancelled: Callable[[], bool]=None):
        self._content = content
        self.cancelled = cancelled
        self.name = name
        self.media_type = media_type
        self.length = length
        self.spec = spec
        self.checksums = dict(checksums or {})
        self.entries = list(entries or [])
        self._consumed = False

    @property
    def consumed(self):
        """
        True if the package's bytes have already been opened for reading
        """
        return self._consumed

    def open(self, interruptible: bool=False):
        """
        return a readable binary stream of the package's bytes, positioned at the beginning.

        :param bool interruptible:  if True and the package was assembled for a cancellable
                        attempt, return an :py:class:`InterruptibleReader` that raises
                        :py:class:`~passdeposit.exceptions.AttemptCancelled` if the attempt is
                        cancelled while the package is being read.
        :raises StateException:  if the package was already opened or discarded
        """
        if self._consumed or self._content is None:
            raise StateException("Package %s has already been consumed" % self.name)
        self._consumed = True
        self._content.seek(0)
        if interruptible and self.cancelled:
            return InterruptibleReader(self._content, self.cancelled, self.length, self.name)
        return self._content

    def discard(self):
        """
        release the package's content
        """
        self._consumed = True
        if self._content is not None:
            self._content.close()
            self._content = None

    def __enter__(self):
        return self

    def __exit__(self, ex_type, ex_val, ex_tb):
        self.discard()
        return False

    def __repr__(self):
        return "PackageStream(%r, %s, %s bytes)" % (self.name, self.media_type, self.length)

class PackageAssembler(object):
    """
    a class that assembles deposit packages according to :py:class:`AssemblerOptions`.  An
    assembler holds no per-package state, so a single instance can be used by multiple
    threads.

    This class looks for the following configuration parameters:

    ``spool_size``
        (*int*) the maximum package size (in bytes) kept in memory before spilling to a
        temporary file (default: 16 MB)
    ``tmpdir``
        (*str*) the directory where temporary files are written (default: the system default)
    """

    def __init__(self, config: Mapping=None, log: logging.Logger=None):
        if config is None:
            config = {}
        self.cfg = config
        self.spool_size = int(self.cfg.get('spool_size', DEF_SPOOL_SIZE))
        self.tmpdir = self.cfg.get('tmpdir')
        if not log:
            log = logging.getLogger(_sys.system_abbrev).getChild(_sys.subsystem_abbrev)
        self.log = log

    def assemble(self, submission: Submission, options: AssemblerOptions,
                 cancelled: Callable[[], bool]=None) -> PackageStream:
        """
        assemble a package for the given submission.

        :param Submission submission:  the submission to package
        :param AssemblerOptions options:  the options controlling the package format
        :param cancelled:  a function that returns True if the assembly should be abandoned;
                           it is checked before each file is written.  It is also attached
                           to the returned package so that its transmission can be
                           interrupted (see :py:meth:`PackageStream.open`).
        :raises PackagingError:    if the package cannot be assembled
        :raises AttemptCancelled:  if ``cancelled`` returned True
        """
        options.validate()
        self._check_content(submission, options)
        mdata = None
        if options.archive != ARCHIVE_NONE:
            mdata = self.serialize_metadata(submission, options)

        if options.archive == ARCHIVE_NONE:
            name = package_name_for(submission.id, options, submission.files[0].name)
            mtype = options.media_type or submission.files[0].content_type
        else:
            name = package_name_for(submission.id, options)
            mtype = options.media_type

        spool = tempfile.SpooledTemporaryFile(max_size=self.spool_size, dir=self.tmpdir)
        try:
            manifest = ManifestBuilder(options.checksums)
            with ArchiveWriter(spool, options.archive, options.compression, self.log) as wrtr:
                for cf in submission.files:
                    if cancelled and cancelled():
                        raise AttemptCancelled(id=submission.id)
                    self._write_file(wrtr, manifest, cf, submission.id, options)

                if options.archive != ARCHIVE_NONE:
                    wrtr.write_bytes(options.metadata_entry, mdata)
                    wrtr.write_bytes(options.manifest_entry, manifest.serialize())
                entries = wrtr.names

            spool.seek(0)
            rdr = DigestingReader(spool, PACKAGE_CHECKSUMS)
            while rdr.read(io.DEFAULT_BUFFER_SIZE * 16):
                pass
        except OSError as ex:
            spool.close()
            raise PackagingError("failed to spool package: " + str(ex), IO_FAILURE, submission.id,
                                 cause=ex)
        except BaseException:
            spool.close()
            raise

        self.log.info("Assembled package %s for %s (%d files, %d bytes)", name, submission.id,
                      len(submission.files), rdr.count)
        return PackageStream(spool, name, mtype, rdr.count, options.spec, rdr.digests(), entries,
                             cancelled)

    def _check_content(self, submission, options):
        files = submission.files
        if not files:
            raise PackagingError("submission has no custodial files", UNSUPPORTED_OPTIONS,
                                 submission.id)
        if options.archive == ARCHIVE_NONE:
            if len(files) != 1:
                raise PackagingError("exactly one file is required when no archive container is used "
                                     "(found %d)" % len(files), UNSUPPORTED_OPTIONS, submission.id)
            return

        seen = set()
        reserved = (options.metadata_entry, options.manifest_entry)
        for cf in files:
            if not _check_entry_name(cf.name):
                raise PackagingError("illegal file path for package entry: " + cf.name,
                                     UNSUPPORTED_OPTIONS, submission.id)
            if cf.name in seen:
                raise PackagingError("duplicate file path: " + cf.name, UNSUPPORTED_OPTIONS,
                                     submission.id)
            if cf.name in reserved:
                raise PackagingError("file path conflicts with a reserved package entry: " + cf.name,
                                     UNSUPPORTED_OPTIONS, submission.id)
            seen.add(cf.name)

    def serialize_metadata(self, submission: Submission, options: AssemblerOptions) -> bytes:
        """
        serialize the submission's metadata for inclusion in its package.  By default, this
        is JSON with sorted keys; if the options provide a ``metadata_template``, the template
        is rendered with the metadata's properties (plus ``submission_id``).

        :raises PackagingError:  (with cause type ``metadata_serialization``) on failure
        """
        try:
            if options.metadata_template:
                values = dict(submission.metadata)
                values.setdefault('submission_id', submission.id)
                return string.Template(options.metadata_template).substitute(values).encode('utf-8')
            return json.dumps(submission.metadata, indent=2, sort_keys=True,
                              ensure_ascii=False).encode('utf-8')
        except (TypeError, ValueError, KeyError) as ex:
            raise PackagingError("unable to serialize metadata: " + str(ex), METADATA_SERIALIZATION,
                                 submission.id, cause=ex)

    def _write_file(self, wrtr, manifest, cf: CustodialFile, subid, options):
        try:
            size = cf.size
            src = cf.open()
        except (OSError, TypeError) as ex:
            raise PackagingError("unable to open custodial file %s: %s" % (cf.name, str(ex)),
                                 IO_FAILURE, subid, cause=ex)

        try:
            if size is None and options.archive == ARCHIVE_TAR:
                # tar needs to know the size up front
                src = self._spool_file(src)
                src.seek(0, os.SEEK_END)
                size = src.tell()
                src.seek(0)

            rdr = manifest.reader_for(src)
            wrtr.write_entry(cf.name, rdr, size)
            if size is not None and rdr.count != size:
                raise PackagingError("%s: expected %d bytes, read %d" % (cf.name, size, rdr.count),
                                     IO_FAILURE, subid)
            manifest.add_from(cf.name, rdr)
        except OSError as ex:
            raise PackagingError("failed reading custodial file %s: %s" % (cf.name, str(ex)),
                                 IO_FAILURE, subid, cause=ex)
        finally:
            src.close()

    def _spool_file(self, src):
        out = tempfile.SpooledTemporaryFile(max_size=self.spool_size, dir=self.tmpdir)
        try:
            while True:
                buf = src.read(io.DEFAULT_BUFFER_SIZE * 16)
                if not buf:
                    break
                out.write(buf)
        except BaseException:
            out.close()
            raise
        finally:
            src.close()
        return out
