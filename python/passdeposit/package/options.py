"""
The options that control how a deposit package is assembled.
"""
from collections.abc import Mapping
from typing import Iterable

from . import PackagingError, UNSUPPORTED_OPTIONS
from .manifest import SUPPORTED_ALGORITHMS

ARCHIVE_NONE = "none"
ARCHIVE_ZIP  = "zip"
ARCHIVE_TAR  = "tar"
ARCHIVES = (ARCHIVE_NONE, ARCHIVE_ZIP, ARCHIVE_TAR)

COMPRESSION_NONE = "none"
COMPRESSION_GZIP = "gzip"
COMPRESSIONS = (COMPRESSION_NONE, COMPRESSION_GZIP)

# the allowed (archive, compression) combinations.  ZIP compresses each entry itself, so an
# outer gzip layer is not allowed.
COMPATIBLE = {
    ARCHIVE_NONE: (COMPRESSION_NONE, COMPRESSION_GZIP),
    ARCHIVE_TAR:  (COMPRESSION_NONE, COMPRESSION_GZIP),
    ARCHIVE_ZIP:  (COMPRESSION_NONE,)
}

DEF_METADATA_ENTRY = "metadata.json"
DEF_MANIFEST_ENTRY = "manifest.csv"

class AssemblerOptions(object):
    """
    an immutable set of options for assembling a package.  These are:

    ``archive``
        the archive container to use: one of "none", "zip", or "tar".  With "none", the
        package is the single custodial file itself (so the submission must have exactly one
        file, and no metadata or manifest entries are included).
    ``compression``
        the compression to apply to the whole package: "none" or "gzip".  gzip cannot be
        combined with zip.
    ``checksums``
        a list of digest algorithm names (e.g. "sha256") to compute for each custodial file
        and record in the manifest; it may be empty.
    ``spec``
        the package specification identifier (a free-text tag that tells the receiving
        repository how to interpret the package).
    ``metadata_entry``, ``manifest_entry``
        the names of the metadata and manifest entries within the archive
    ``metadata_template``
        if set, a :py:class:`string.Template` used to render the metadata entry (with the
        metadata's top-level properties as substitution values); otherwise, the metadata is
        written as JSON.
    """

    def __init__(self, archive: str=ARCHIVE_ZIP, compression: str=COMPRESSION_NONE,
                 checksums: Iterable[str]=None, spec: str=None,
                 metadata_entry: str=DEF_METADATA_ENTRY, manifest_entry: str=DEF_MANIFEST_ENTRY,
                 metadata_template: str=None):
        self._archive = (archive or ARCHIVE_NONE).lower()
        self._compression = (compression or COMPRESSION_NONE).lower()
        if isinstance(checksums, str):
            checksums = [checksums]
        self._checksums = tuple(a.lower() for a in (checksums or []))
        self._spec = spec
        self._mdentry = metadata_entry
        self._mfentry = manifest_entry
        self._mdtmpl = metadata_template

    @classmethod
    def from_config(cls, config: Mapping):
        """
        create options from a configuration dictionary with keys named after the option
        properties (where ``checksum`` and ``algorithms`` are accepted as synonyms for
        ``checksums``, and ``specification`` for ``spec``).  The
        returned options are validated.
        :raises PackagingError:  if the options are not supported
        """
        if not isinstance(config, Mapping):
            raise PackagingError("assembler options must be a dictionary", UNSUPPORTED_OPTIONS)
        checksums = config.get('checksums', config.get('checksum', config.get('algorithms')))
        out = cls(config.get('archive', ARCHIVE_ZIP), config.get('compression', COMPRESSION_NONE),
                  checksums, config.get('spec', config.get('specification')),
                  config.get('metadata_entry', DEF_METADATA_ENTRY),
                  config.get('manifest_entry', DEF_MANIFEST_ENTRY),
                  config.get('metadata_template'))
        out.validate()
        return out

    @property
    def archive(self):
        return self._archive

    @property
    def compression(self):
        return self._compression

    @property
    def checksums(self):
        return self._checksums

    @property
    def spec(self):
        return self._spec

    @property
    def metadata_entry(self):
        return self._mdentry

    @property
    def manifest_entry(self):
        return self._mfentry

    @property
    def metadata_template(self):
        return self._mdtmpl

    def validate(self):
        """
        ensure that this set of options is supported.
        :raises PackagingError:  (with cause type ``unsupported_options``) if it is not
        """
        if self._archive not in ARCHIVES:
            raise PackagingError("unsupported archive format: " + self._archive, UNSUPPORTED_OPTIONS)
        if self._compression not in COMPRESSIONS:
            raise PackagingError("unsupported compression: " + self._compression, UNSUPPORTED_OPTIONS)
        if self._compression not in COMPATIBLE[self._archive]:
            raise PackagingError("compression %s cannot be used with archive format %s" %
                                 (self._compression, self._archive), UNSUPPORTED_OPTIONS)
        bad = [a for a in self._checksums if a not in SUPPORTED_ALGORITHMS]
        if bad:
            raise PackagingError("unsupported checksum algorithm(s): " + ", ".join(bad),
                                 UNSUPPORTED_OPTIONS)
        if self._archive != ARCHIVE_NONE:
            if not self._mdentry or not self._mfentry:
                raise PackagingError("metadata and manifest entry names must be non-empty",
                                     UNSUPPORTED_OPTIONS)
            if self._mdentry == self._mfentry:
                raise PackagingError("metadata and manifest entries cannot have the same name",
                                     UNSUPPORTED_OPTIONS)

    @property
    def extension(self):
        """
        the filename extension for packages assembled with these options (or an empty string
        if the package takes on the name of its single file)
        """
        ext = ""
        if self._archive != ARCHIVE_NONE:
            ext = "." + self._archive
        if self._compression == COMPRESSION_GZIP:
            ext += ".gz"
        return ext

    @property
    def media_type(self):
        """
        the MIME type of packages assembled with these options, or None if it is that of the
        single custodial file
        """
        if self._compression == COMPRESSION_GZIP:
            return "application/gzip"
        if self._archive == ARCHIVE_ZIP:
            return "application/zip"
        if self._archive == ARCHIVE_TAR:
            return "application/x-tar"
        return None

    def __eq__(self, other):
        return isinstance(other, AssemblerOptions) and self._key() == other._key()

    def __hash__(self):
        return hash(self._key())

    def _key(self):
        return (self._archive, self._compression, self._checksums, self._spec, self._mdentry,
                self._mfentry, self._mdtmpl)

    def __repr__(self):
        return "AssemblerOptions(archive=%r, compression=%r, checksums=%r, spec=%r)" % \
               (self._archive, self._compression, list(self._checksums), self._spec)
