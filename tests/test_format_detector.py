"""
Tests for dump format detection and header decoding.
"""
import random
from datetime import datetime, timezone

import pytest

from bsod_facts.core.format_detector import (
    describe_machine_type,
    detect_format,
    extract_header,
    validate_dump_file,
)
from bsod_facts.core.models import DumpFormat
from conftest import build_full_kernel_dump, build_legacy_kernel_dump, build_minidump


class TestDetectFormat:
    """Signature classification."""

    def test_full_kernel_dump(self, full_kernel_dump):
        assert detect_format(full_kernel_dump) == DumpFormat.FULL_KERNEL_DUMP

    def test_legacy_kernel_dump(self, legacy_kernel_dump):
        assert detect_format(legacy_kernel_dump) == DumpFormat.LEGACY_KERNEL_DUMP

    def test_minidump(self, minidump):
        assert detect_format(minidump) == DumpFormat.MINIDUMP

    def test_page_without_dump_is_unknown(self):
        assert detect_format(b"PAGEXXXX" + bytes(64)) == DumpFormat.UNKNOWN

    @pytest.mark.parametrize("data", [b"", b"M", b"MDM", b"PAGEDU6", bytes(3)])
    def test_short_buffers_never_raise(self, data):
        assert detect_format(data) == DumpFormat.UNKNOWN

    def test_deterministic_on_random_bytes(self):
        rng = random.Random(1234)
        for _ in range(200):
            data = bytes(rng.getrandbits(8) for _ in range(rng.randint(0, 64)))
            assert detect_format(data) == detect_format(data)

    def test_accepts_bytearray(self, minidump):
        assert detect_format(bytearray(minidump)) == DumpFormat.MINIDUMP


class TestExtractHeader:
    """Fixed header decoding."""

    def test_full_kernel_header(self, full_kernel_dump):
        header = extract_header(full_kernel_dump)

        assert header.signature == "PAGEDU64"
        assert header.major_version == 0x0F
        assert header.minor_version == 0x4A61
        assert header.machine_image_type == 0x8664
        assert header.directory_table_base == 0x1AD000
        assert header.pfn_database == 0xFFFFFA8000000000
        assert header.ps_loaded_module_list == 0xFFFFF80002A4B8D0

    def test_legacy_kernel_header(self, legacy_kernel_dump):
        header = extract_header(legacy_kernel_dump)

        assert header.signature == "PAGEDUMP"
        assert header.major_version == 0x0F
        assert header.minor_version == 0x1DB1
        assert header.machine_image_type == 0x014C
        assert header.ps_loaded_module_list == 0x8055B1C0

    def test_minidump_header(self, minidump):
        header = extract_header(minidump)

        assert header.signature == "MINIDUMP"
        assert header.version == 0xA793
        assert header.stream_count == 1
        assert header.stream_directory == 32
        assert header.timestamp == datetime.fromtimestamp(1700000000, tz=timezone.utc)

    def test_truncated_headers(self):
        assert extract_header(build_full_kernel_dump()[:0x37]) is None
        assert extract_header(build_legacy_kernel_dump()[:0x23]) is None
        assert extract_header(build_minidump()[:0x1F]) is None

    def test_unknown_format(self):
        assert extract_header(b"NOTADUMP" * 16) is None


class TestValidateDumpFile:
    """Pre-extraction signature check."""

    @pytest.mark.parametrize("data", [b"", b"PAGEDU6", b"MDMP"])
    def test_too_small(self, data):
        result = validate_dump_file(data)

        assert not result.is_valid
        assert result.error == "File too small to be a valid dump file"

    def test_file_types(self, full_kernel_dump, legacy_kernel_dump, minidump):
        assert validate_dump_file(full_kernel_dump).file_type == "PAGEDU64 (Full/Kernel Dump)"
        assert validate_dump_file(minidump).file_type == "MINIDUMP"
        assert validate_dump_file(legacy_kernel_dump).file_type == "PAGEDUMP (Kernel Dump)"

    def test_page_prefix_alone_is_accepted(self):
        result = validate_dump_file(b"PAGE" + bytes(12))

        assert result.is_valid
        assert result.file_type == "PAGEDUMP (Kernel Dump)"

    def test_unrecognized(self):
        result = validate_dump_file(b"\x7fELF" + bytes(60))

        assert not result.is_valid
        assert result.error == "Unrecognized dump file format"


def test_describe_machine_type():
    assert describe_machine_type(0x8664) == "AMD64"
    assert describe_machine_type(0x014C) == "I386"
    assert describe_machine_type(0x1234) == "UNKNOWN(0x1234)"
    assert describe_machine_type(None) == "UNKNOWN"
