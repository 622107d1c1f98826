"""
Unit tests for dump post-processing (backup_orchestrator/core/postprocess.py).

Covers hashing into the checksum ledger, compression and ledger verification.
"""

import gzip
import hashlib
import lzma
import os

import pytest

from backup_orchestrator.core import postprocess
from backup_orchestrator.core.messages import Severity
from backup_orchestrator.core.models import ItemResult, RunStatistics
from backup_orchestrator.core.postprocess import (
    CompressionError,
    DumpPostProcessor,
    compress_file,
    read_ledger,
    sha256_file,
    verify_ledger,
)

TESTDATA_DIGEST = hashlib.sha256(b'TESTDATA').hexdigest()


@pytest.fixture
def raw_dump(depot):
    path = depot / 'alpha.sql'
    path.write_bytes(b'TESTDATA')
    return path


@pytest.fixture
def item_result():
    return ItemResult(item_id='database(alpha)')


@pytest.fixture
def item_log(run_log, item_result):
    return run_log.bind('database(alpha)', sink=item_result)


class TestSha256File:
    """Test streaming digest calculation."""

    def test_matches_hashlib(self, tmp_path):
        """Test the streamed digest equals a one-shot digest."""
        data = os.urandom(3 * postprocess.CHUNK_SIZE + 17)
        path = tmp_path / 'blob'
        path.write_bytes(data)

        assert sha256_file(str(path)) == hashlib.sha256(data).hexdigest()

    def test_with_decompressing_opener(self, tmp_path):
        """Test hashing the uncompressed stream of an archive."""
        path = tmp_path / 'blob.gz'
        with gzip.open(path, 'wb') as f:
            f.write(b'TESTDATA')

        assert sha256_file(str(path), gzip.open) == TESTDATA_DIGEST


class TestCompressFile:
    """Test compress_file function."""

    @pytest.mark.parametrize("compression,extension,opener", [
        ("xz", ".xz", lzma.open),
        ("gz", ".gz", gzip.open),
    ])
    def test_compress_formats(self, raw_dump, compression, extension, opener):
        """Test compressing with the supported formats keeps the source."""
        target = compress_file(str(raw_dump), compression)

        assert target == str(raw_dump) + extension
        assert raw_dump.exists()
        with opener(target, 'rb') as f:
            assert f.read() == b'TESTDATA'

    def test_invalid_format(self, raw_dump):
        """Test unknown formats are rejected."""
        with pytest.raises(ValueError):
            compress_file(str(raw_dump), 'rar')

    def test_missing_source_leaves_no_partial_file(self, depot):
        """Test failures do not leave a partial archive behind."""
        with pytest.raises(CompressionError):
            compress_file(str(depot / 'missing.sql'))

        assert os.listdir(depot) == []


class TestDumpPostProcessor:
    """Test the hash-then-compress pipeline."""

    def test_ledger_line_for_alpha(self, postprocessor, raw_dump, depot, item_log):
        """Test alpha.sql containing TESTDATA yields the expected ledger line."""
        postprocessor.process(str(raw_dump), log=item_log)

        ledger = (depot / 'sha256sums.txt').read_text()
        assert ledger == f"{TESTDATA_DIGEST}  alpha.sql\n"

    def test_artifact_after_success(self, postprocessor, raw_dump, item_log, item_result):
        """Test the raw file is replaced by the compressed one."""
        artifact = postprocessor.process(str(raw_dump), log=item_log)

        assert artifact.sha256 == TESTDATA_DIGEST
        assert artifact.raw_size_bytes == 8
        assert artifact.compressed_path == str(raw_dump) + '.xz'
        assert artifact.compressed_size_bytes == os.path.getsize(artifact.compressed_path)
        assert not raw_dump.exists()
        assert item_result.succeeded
        assert item_result.statistics.warning_count == 0

    def test_hash_is_logged_before_compression(self, postprocessor, raw_dump, item_log, run_log):
        """Test the digest is always taken before compressing."""
        postprocessor.process(str(raw_dump), log=item_log)

        keys = run_log.keys()
        assert keys.index('INFO_HASH_FINISHED') < keys.index('INFO_COMPRESS_START')

    def test_repeated_processing_keeps_ledger_consistent(self, postprocessor, depot, item_log):
        """Test processing the same bytes twice appends two identical, valid lines."""
        for _ in range(2):
            (depot / 'alpha.sql').write_bytes(b'TESTDATA')
            postprocessor.process(str(depot / 'alpha.sql'), log=item_log)

        lines = (depot / 'sha256sums.txt').read_text().splitlines()
        assert lines == [f"{TESTDATA_DIGEST}  alpha.sql"] * 2
        assert read_ledger(str(depot / 'sha256sums.txt')) == {'alpha.sql': TESTDATA_DIGEST}

    def test_compression_failure_keeps_raw_file(self, postprocessor, raw_dump, item_log,
                                                item_result, monkeypatch):
        """Test a failed compression is an item error and keeps the raw dump."""
        def broken(path, compression):
            raise CompressionError("disk full")
        monkeypatch.setattr(postprocess, 'compress_file', broken)

        artifact = postprocessor.process(str(raw_dump), log=item_log)

        assert raw_dump.exists()
        assert artifact.compressed_path is None
        assert artifact.sha256 == TESTDATA_DIGEST
        assert item_result.statistics.error_count == 1

    def test_failure_without_log_counts_into_default_sink(self, depot, raw_dump, run_log,
                                                          monkeypatch):
        """Test a processor with a bound default log counts a compression error."""
        def broken(path, compression):
            raise CompressionError("disk full")
        monkeypatch.setattr(postprocess, 'compress_file', broken)
        stats = RunStatistics()
        processor = DumpPostProcessor(str(depot / 'sums.txt'), run_log.bind('backup', sink=stats))

        processor.process(str(raw_dump))

        assert run_log.keys(Severity.CRIT) == ['CRIT_COMPRESS_FAILED']
        assert stats.error_count == 1

    def test_processed_names_are_remembered(self, postprocessor, raw_dump, item_log):
        """Test the processor keeps the base names of processed dumps."""
        postprocessor.process(str(raw_dump), log=item_log)

        assert postprocessor.processed == {'alpha.sql'}

    def test_unreadable_file_skips_digest(self, postprocessor, depot, item_log, item_result, run_log):
        """Test a raw file that can not be opened gets no digest and a warning."""
        artifact = postprocessor.process(str(depot / 'gone.sql'), log=item_log)

        assert artifact.sha256 is None
        assert 'WARN_HASH_OPEN_FAILED' in run_log.keys(Severity.WARN)
        assert not (depot / 'sha256sums.txt').exists()
        assert item_result.statistics.warning_count == 1

    def test_ledger_write_failure_is_warning(self, depot, raw_dump, run_log, item_log, item_result):
        """Test an unwritable ledger only warns."""
        processor = DumpPostProcessor(str(depot / 'missing-dir' / 'sums.txt'), run_log)

        artifact = processor.process(str(raw_dump), log=item_log)

        assert artifact.sha256 == TESTDATA_DIGEST
        assert artifact.compressed_path is not None
        assert run_log.keys(Severity.WARN) == ['WARN_LEDGER_OPEN_FAILED']
        assert item_result.statistics.error_count == 0

    def test_invalid_compression(self, depot, run_log):
        """Test the constructor rejects unknown formats."""
        with pytest.raises(ValueError):
            DumpPostProcessor(str(depot / 'sums.txt'), run_log, compression='zip')


class TestVerifyLedger:
    """Test verification of a depot against its ledger."""

    def test_compressed_artifacts_verify(self, postprocessor, raw_dump, depot, item_log):
        """Test digests of compressed artifacts are reproducible."""
        postprocessor.process(str(raw_dump), log=item_log)

        report = verify_ledger(str(depot))

        assert report.ok
        assert report.verified == ['alpha.sql']

    def test_raw_artifact_verifies(self, depot):
        """Test an uncompressed file is checked as is."""
        (depot / 'beta.sql').write_bytes(b'TESTDATA')
        (depot / 'sha256sums.txt').write_text(f"{TESTDATA_DIGEST}  beta.sql\n")

        assert verify_ledger(str(depot)).verified == ['beta.sql']

    def test_mismatch_and_missing(self, depot):
        """Test tampered and missing files are reported."""
        (depot / 'beta.sql').write_bytes(b'tampered')
        (depot / 'sha256sums.txt').write_text(
            f"{TESTDATA_DIGEST}  beta.sql\n{TESTDATA_DIGEST}  gamma.sql\n"
        )

        report = verify_ledger(str(depot))

        assert not report.ok
        assert report.mismatched == ['beta.sql']
        assert report.missing == ['gamma.sql']

    def test_missing_ledger_raises(self, depot):
        """Test a depot without ledger raises OSError."""
        with pytest.raises(OSError):
            verify_ledger(str(depot))
