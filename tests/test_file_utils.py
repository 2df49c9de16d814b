"""Tests for embroidery_buddy.storage.file_utils module."""

import errno
import io

from embroidery_buddy.exceptions import BackendError, InsufficientSpaceError
from embroidery_buddy.storage.file_utils import (
    copy_stream,
    is_out_of_space_error,
    translate_os_error,
)


class TestCopyStream:
    """Tests for copy_stream() function."""

    def test_copies_exact_size(self):
        target = io.BytesIO()

        assert copy_stream(io.BytesIO(b"hello world"), target, 5) == 5
        assert target.getvalue() == b"hello"

    def test_stops_when_source_exhausted(self):
        """Test that a short source is not an error."""
        target = io.BytesIO()

        assert copy_stream(io.BytesIO(b"abc"), target, 10) == 3
        assert target.getvalue() == b"abc"

    def test_unlimited(self):
        """Test that None and negative sizes copy everything."""
        payload = b"z" * 1000
        for size in (None, -1):
            target = io.BytesIO()
            assert copy_stream(io.BytesIO(payload), target, size, chunk_size=64) == 1000
            assert target.getvalue() == payload

    def test_chunked(self):
        """Test copies spanning several chunks, ending mid-chunk."""
        payload = bytes(range(256)) * 10
        target = io.BytesIO()

        assert copy_stream(io.BytesIO(payload), target, 2000, chunk_size=300) == 2000
        assert target.getvalue() == payload[:2000]

    def test_zero_size(self):
        target = io.BytesIO()

        assert copy_stream(io.BytesIO(b"abc"), target, 0) == 0
        assert target.getvalue() == b""


class TestErrorTranslation:
    """Tests for is_out_of_space_error() and translate_os_error()."""

    def test_out_of_space_detection(self):
        assert is_out_of_space_error(OSError(errno.ENOSPC, "No space left"))
        assert is_out_of_space_error(OSError(errno.EFBIG, "File too large"))
        assert is_out_of_space_error(InsufficientSpaceError())
        assert not is_out_of_space_error(OSError(errno.EIO, "I/O error"))
        assert not is_out_of_space_error(None)

    def test_translate_enospc(self):
        error = translate_os_error(OSError(errno.ENOSPC, "No space left"), "/a.pes", "write file")

        assert isinstance(error, InsufficientSpaceError)
        assert error.path == "/a.pes"

    def test_translate_other(self):
        error = translate_os_error(OSError(errno.EIO, "I/O error"), "/a.pes", "write file")

        assert isinstance(error, BackendError)
        assert "Failed to write file /a.pes" in str(error)
        assert error.path == "/a.pes"
