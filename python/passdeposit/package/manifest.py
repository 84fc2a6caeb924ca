"""
Tools for calculating checksums of custodial files and for creating the checksum manifest that
gets included in a deposit package.

The manifest is a CSV table with a header row (``path``, ``size``, and one column per
checksum algorithm) followed by one row per file sorted by path.  The sorting ensures that
packaging the same content twice produces a byte-identical manifest.
"""
import csv, hashlib, io
from collections import OrderedDict
from typing import Iterable, Mapping

from . import PackagingError, UNSUPPORTED_OPTIONS

SUPPORTED_ALGORITHMS = ("md5", "sha1", "sha256", "sha512")
BUFSIZE = 1024 * 1024   # 1 MB read buffer

def _new_digest(alg):
    if alg not in SUPPORTED_ALGORITHMS:
        raise PackagingError("unsupported checksum algorithm: " + str(alg), UNSUPPORTED_OPTIONS)
    return hashlib.new(alg)

def checksum_of(src, alg: str="sha256") -> str:
    """
    return the checksum hash (as a hex string) of the given file

    :param src:       either a path to a file or a readable binary stream (which will be read
                      to its end but not closed)
    :param str alg:   the name of the digest algorithm to use (default: sha256)
    """
    sum = _new_digest(alg)
    if isinstance(src, str):
        with open(src, 'rb') as fd:
            return checksum_of(fd, alg)

    while True:
        buf = src.read(BUFSIZE)
        if not buf:
            break
        sum.update(buf)
    return sum.hexdigest()

class DigestingReader(io.RawIOBase):
    """
    a read-only stream wrapper that computes checksums and a byte count of everything read
    through it.  This allows a file to be copied into an archive and checksummed in a single
    pass.
    """

    def __init__(self, stream, algorithms: Iterable[str]=()):
        super(DigestingReader, self).__init__()
        self._src = stream
        self._sums = OrderedDict((a, _new_digest(a)) for a in algorithms)
        self.count = 0

    def readable(self):
        return True

    def readinto(self, buf):
        data = self._src.read(len(buf))
        n = len(data)
        buf[:n] = data
        self._update(data)
        return n

    def read(self, size=-1):
        data = self._src.read(size)
        self._update(data)
        return data

    def _update(self, data):
        if data:
            self.count += len(data)
            for sum in self._sums.values():
                sum.update(data)

    def digests(self) -> Mapping[str, str]:
        """
        return the checksums of the bytes read so far, keyed by algorithm name
        """
        return OrderedDict((a, s.hexdigest()) for a, s in self._sums.items())

class ManifestBuilder(object):
    """
    a builder for a package's checksum manifest
    """

    def __init__(self, algorithms: Iterable[str]=()):
        self.algorithms = tuple(algorithms)
        for a in self.algorithms:
            _new_digest(a)
        self._entries = {}

    def reader_for(self, stream) -> DigestingReader:
        """
        wrap the given stream so that reading from it computes the checksums needed for the
        manifest
        """
        return DigestingReader(stream, self.algorithms)

    def add(self, path: str, size: int, digests: Mapping[str, str]=None):
        """
        add a file to the manifest

        :param str    path:  the file's path within the package
        :param int    size:  the file's size in bytes
        :param dict digests: the file's checksums keyed by algorithm name; it must include a
                             value for each of this builder's algorithms.
        """
        if path in self._entries:
            raise PackagingError("duplicate file path in package: " + path, UNSUPPORTED_OPTIONS)
        if digests is None:
            digests = {}
        missing = [a for a in self.algorithms if a not in digests]
        if missing:
            raise ValueError("%s: missing %s checksum(s)" % (path, ", ".join(missing)))
        self._entries[path] = (size, dict((a, digests[a]) for a in self.algorithms))

    def add_from(self, path: str, reader: DigestingReader):
        """
        add a file to the manifest using the byte count and checksums collected by a
        :py:class:`DigestingReader` that the file's content was read through
        """
        self.add(path, reader.count, reader.digests())

    def __len__(self):
        return len(self._entries)

    def __contains__(self, path):
        return path in self._entries

    def entries(self):
        """
        return the manifest's entries as a list of (path, size, digests) tuples sorted by path
        """
        return [(p, self._entries[p][0], self._entries[p][1]) for p in sorted(self._entries)]

    def serialize(self) -> bytes:
        """
        return the manifest as UTF-8-encoded CSV
        """
        out = io.StringIO()
        wrtr = csv.writer(out, lineterminator="\n")
        wrtr.writerow(["path", "size"] + list(self.algorithms))
        for path, size, digests in self.entries():
            wrtr.writerow([path, str(size)] + [digests[a] for a in self.algorithms])
        return out.getvalue().encode('utf-8')
