"""
Tools for writing package entries into an archive container.

An :py:class:`ArchiveWriter` wraps an output byte sink with one of the supported container
(none, zip, tar) and compression (none, gzip) combinations.  Entries are written one at a time
via :py:meth:`~ArchiveWriter.write_entry`; :py:meth:`~ArchiveWriter.close` flushes the
compression and container trailers.
"""
import io, gzip, shutil, tarfile, time, zipfile, logging

from . import PackagingError, IO_FAILURE, UNSUPPORTED_OPTIONS, system as _sys
from .options import (ARCHIVE_NONE, ARCHIVE_ZIP, ARCHIVE_TAR, COMPRESSION_NONE, COMPRESSION_GZIP,
                      COMPATIBLE)
from ..utils.logging import blab

ZIP64_LIMIT = (1 << 31) - 1

def _zip_serialize(sink, compression):
    return zipfile.ZipFile(sink, 'w', compression=zipfile.ZIP_DEFLATED, allowZip64=True)

def _tar_serialize(sink, compression):
    mode = 'w:gz' if compression == COMPRESSION_GZIP else 'w'
    return tarfile.open(fileobj=sink, mode=mode, format=tarfile.PAX_FORMAT)

def _raw_serialize(sink, compression):
    if compression == COMPRESSION_GZIP:
        return gzip.GzipFile(fileobj=sink, mode='wb')
    return None

_openers = {
    ARCHIVE_ZIP:  _zip_serialize,
    ARCHIVE_TAR:  _tar_serialize,
    ARCHIVE_NONE: _raw_serialize
}

class ArchiveWriter(object):
    """
    a writer of entries into an archive wrapping a binary output sink.  The sink is not closed
    when the writer is closed.

    The writer can be used as a context manager: on normal exit it is closed; if an exception
    is raised, it is aborted (and the sink contents should be discarded).
    """

    def __init__(self, sink, archive=ARCHIVE_ZIP, compression=COMPRESSION_NONE, log=None):
        """
        :param sink:              a writable binary stream to write the archive to
        :param str archive:       the container format: "none", "zip", or "tar"
        :param str compression:   the compression to apply: "none" or "gzip"
        :param Logger log:        the Logger to send messages to
        :raises PackagingError:   if the archive-compression combination is not supported
        """
        if archive not in COMPATIBLE:
            raise PackagingError("unsupported archive format: " + str(archive), UNSUPPORTED_OPTIONS)
        if compression not in COMPATIBLE[archive]:
            raise PackagingError("compression %s cannot be used with archive format %s" %
                                 (compression, archive), UNSUPPORTED_OPTIONS)
        if not log:
            log = logging.getLogger(_sys.system_abbrev).getChild(_sys.subsystem_abbrev)
        self.log = log
        self.archive = archive
        self.compression = compression
        self._sink = sink
        self._names = []
        self._closed = False
        try:
            self._out = _openers[archive](sink, compression)
        except (OSError, ValueError) as ex:
            raise PackagingError("unable to open %s archive: %s" % (archive, str(ex)), IO_FAILURE,
                                 cause=ex)

    @property
    def closed(self):
        return self._closed

    @property
    def names(self):
        """
        the names of the entries written so far, in order
        """
        return list(self._names)

    def write_entry(self, name: str, stream, size: int=None, mtime: float=None):
        """
        copy the contents of a readable binary stream into the archive as an entry with the
        given name.

        :param str   name:   the name (path) of the entry within the archive
        :param     stream:   the readable binary stream to copy from; it is not closed
        :param int   size:   the number of bytes the stream will provide; this is required
                             for tar archives.
        :param float mtime:  the modification time to record for the entry (default: now)
        :raises PackagingError:  if the entry cannot be written
        """
        if self._closed:
            raise PackagingError("archive writer is already closed", IO_FAILURE)
        if mtime is None:
            mtime = time.time()
        blab(self.log, "writing archive entry: %s", name)

        try:
            if self.archive == ARCHIVE_ZIP:
                info = zipfile.ZipInfo(name, date_time=time.localtime(mtime)[:6])
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                with self._out.open(info, 'w', force_zip64=(size is None or size > ZIP64_LIMIT)) as dest:
                    shutil.copyfileobj(stream, dest)

            elif self.archive == ARCHIVE_TAR:
                if size is None:
                    raise PackagingError("entry size must be known for tar archives: "+name, IO_FAILURE)
                info = tarfile.TarInfo(name)
                info.size = size
                info.mtime = int(mtime)
                info.mode = 0o644
                self._out.addfile(info, stream)

            else:
                if self._names:
                    raise PackagingError("only one entry can be written without an archive container",
                                         UNSUPPORTED_OPTIONS)
                shutil.copyfileobj(stream, self._out or self._sink)

        except (OSError, ValueError, zipfile.LargeZipFile, tarfile.TarError) as ex:
            raise PackagingError("failed to write entry %s: %s" % (name, str(ex)), IO_FAILURE, cause=ex)

        self._names.append(name)

    def write_bytes(self, name: str, data: bytes, mtime: float=None):
        """
        write the given bytes into the archive as an entry with the given name
        """
        self.write_entry(name, io.BytesIO(data), len(data), mtime)

    def close(self):
        """
        finish writing the archive, flushing any compression and container trailers to the
        sink.
        """
        if self._closed:
            return
        self._closed = True
        try:
            if self._out is not None:
                self._out.close()
            self._sink.flush()
        except (OSError, ValueError, tarfile.TarError) as ex:
            raise PackagingError("failed to complete archive: " + str(ex), IO_FAILURE, cause=ex)

    def abort(self):
        """
        stop writing the archive without completing it.  The contents of the sink are
        incomplete and should be discarded.
        """
        if self._closed:
            return
        self._closed = True
        try:
            if self._out is not None:
                self._out.close()
        except Exception as ex:
            self.log.debug("ignoring error while aborting archive: %s", str(ex))

    def __enter__(self):
        return self

    def __exit__(self, ex_type, ex_val, ex_tb):
        if ex_type:
            self.abort()
        else:
            self.close()
        return False
