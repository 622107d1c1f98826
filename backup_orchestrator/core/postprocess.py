"""Post-processing of dump files: checksum first, then compression.

The SHA-256 digest is always taken over the uncompressed bytes, so every
ledger line can be reproduced independently of the compressor.
"""

import bz2
import gzip
import hashlib
import logging
import lzma
import os
import shutil
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

from .messages import BoundLog, RunLog
from .models import DumpArtifact

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

COMPRESSORS: Dict[str, Tuple[str, Callable]] = {
    'xz': ('.xz', lzma.open),
    'gz': ('.gz', gzip.open),
    'bz2': ('.bz2', bz2.open),
}


class CompressionError(Exception):
    """Raised when a dump file can not be compressed."""
    pass


def sha256_file(path: str, opener: Callable = open) -> str:
    """Compute the SHA-256 hex digest of a file without reading it whole."""
    hasher = hashlib.sha256()
    with opener(path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            hasher.update(chunk)
    return hasher.hexdigest()


def compress_file(source_path: str, compression: str = 'xz') -> str:
    """Compress ``source_path`` next to itself and return the new path.

    The source file is left in place. A partially written output file is
    removed on failure.

    Raises:
        CompressionError: If compression fails.
        ValueError: If the compression format is unknown.
    """
    if compression not in COMPRESSORS:
        raise ValueError(
            f"Invalid compression format: {compression}. "
            f"Valid options: {list(COMPRESSORS.keys())}"
        )

    extension, opener = COMPRESSORS[compression]
    target_path = source_path + extension

    try:
        with open(source_path, 'rb') as src, opener(target_path, 'wb') as dst:
            shutil.copyfileobj(src, dst, CHUNK_SIZE)
    except (OSError, lzma.LZMAError) as e:
        if os.path.exists(target_path):
            try:
                os.remove(target_path)
            except OSError:
                logger.debug(f"Could not remove partial archive {target_path}")
        raise CompressionError(str(e))

    return target_path


class DumpPostProcessor:
    """Hashes and compresses dump files, appending digests to one ledger."""

    def __init__(self, ledger_path: str, log: Union[RunLog, BoundLog], compression: str = 'xz',
                 clock: Callable[[], float] = time.monotonic):
        """Initialize post-processor.

        Args:
            ledger_path: Append-only checksum file shared by the whole run.
            log: Message stream used when ``process`` is called without one.
                Warnings and errors are only counted when it is a bound log.
            compression: One of the keys of ``COMPRESSORS``.
            clock: Monotonic clock in seconds, used for step timings.
        """
        if compression not in COMPRESSORS:
            raise ValueError(f"Invalid compression format: {compression}")
        self.ledger_path = ledger_path
        self.log = log
        self.compression = compression
        self.clock = clock
        self.processed = set()

    def process(self, raw_path: str, log: Optional[BoundLog] = None) -> DumpArtifact:
        """Hash, then compress a raw dump file.

        Neither step raises. A file that can not be hashed is reported as a
        warning and gets no digest. A compression failure is reported as
        critical, and the raw file is kept.

        Messages go to ``log``, or to the processor's own log when none is
        given. Only a bound log counts them into its sink.
        """
        log = log or self.log
        name = os.path.basename(raw_path)
        self.processed.add(name)
        try:
            raw_size = os.path.getsize(raw_path)
        except OSError:
            raw_size = 0
        artifact = DumpArtifact(raw_path=raw_path, raw_size_bytes=raw_size)

        self._hash(artifact, name, log)
        self._compress(artifact, name, log)
        return artifact

    def _hash(self, artifact: DumpArtifact, name: str, log) -> None:
        started = self.clock()
        try:
            digest = sha256_file(artifact.raw_path)
        except OSError as e:
            logger.debug(f"Hashing {artifact.raw_path} failed: {e}")
            log.warning('WARN_HASH_OPEN_FAILED', artifact.raw_path)
            return

        artifact.sha256 = digest
        log.info('INFO_HASH_FINISHED', name, self._elapsed_ms(started), digest)

        try:
            with open(self.ledger_path, 'a', encoding='utf-8') as ledger:
                ledger.write(f"{digest}  {name}\n")
        except OSError as e:
            logger.debug(f"Writing to {self.ledger_path} failed: {e}")
            log.warning('WARN_LEDGER_OPEN_FAILED', self.ledger_path)

    def _compress(self, artifact: DumpArtifact, name: str, log) -> None:
        log.info('INFO_COMPRESS_START', name)
        started = self.clock()
        try:
            compressed_path = compress_file(artifact.raw_path, self.compression)
        except CompressionError as e:
            log.critical('CRIT_COMPRESS_FAILED', name, e)
            return

        artifact.compressed_path = compressed_path
        artifact.compressed_size_bytes = os.path.getsize(compressed_path)
        log.info('INFO_COMPRESS_FINISHED', name, artifact.compressed_size_bytes,
                 self._elapsed_ms(started))

        try:
            os.remove(artifact.raw_path)
        except OSError as e:
            log.warning('WARN_REMOVE_RAW_FAILED', artifact.raw_path, e)

    def _elapsed_ms(self, started: float) -> int:
        return int((self.clock() - started) * 1000)


@dataclass
class LedgerReport:
    """Result of checking a checksum ledger against the depot."""
    verified: List[str] = field(default_factory=list)
    mismatched: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatched and not self.missing


def read_ledger(ledger_path: str) -> Dict[str, str]:
    """Read ledger lines into a mapping of file name to digest.

    When a name appears more than once, the last entry wins.
    """
    entries: Dict[str, str] = {}
    with open(ledger_path, 'r', encoding='utf-8') as ledger:
        for line in ledger:
            line = line.rstrip('\n')
            if not line.strip():
                continue
            digest, _, name = line.partition('  ')
            if name:
                entries[name] = digest
    return entries


def verify_ledger(depot: str, ledger_name: str = 'sha256sums.txt') -> LedgerReport:
    """Recompute the digest of every ledger entry from the files in ``depot``.

    Compressed artifacts are decompressed on the fly so the digest is
    compared against the uncompressed byte stream.

    Raises:
        OSError: If the ledger itself can not be read.
    """
    report = LedgerReport()
    for name, expected in read_ledger(os.path.join(depot, ledger_name)).items():
        candidates = [(os.path.join(depot, name), open)]
        candidates += [(os.path.join(depot, name + ext), opener)
                       for ext, opener in COMPRESSORS.values()]

        actual = None
        for path, opener in candidates:
            if os.path.isfile(path):
                try:
                    actual = sha256_file(path, opener)
                except (OSError, EOFError, lzma.LZMAError) as e:
                    logger.debug(f"Could not read {path}: {e}")
                    continue
                break

        if actual is None:
            report.missing.append(name)
        elif actual == expected:
            report.verified.append(name)
        else:
            report.mismatched.append(name)

    return report
