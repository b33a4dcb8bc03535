"""
Tests for top-level fact aggregation and dump file loading.
"""
import pytest

from bsod_facts.core.parser import DumpFactExtractor, extract_structured_dump_info, read_dump_file
from conftest import ScriptedMinidumpReader, build_minidump, failing_reader_factory


class TestDumpFactExtractor:

    def test_full_kernel_dump(self, full_kernel_dump):
        info = DumpFactExtractor(reader_factory=failing_reader_factory).extract(full_kernel_dump)

        assert info.dump_header.signature == "PAGEDU64"
        assert info.bug_check_info.code == 0x0A
        assert info.exception_info is None
        assert info.thread_context is None

    def test_minidump_with_reader(self, scripted_reader, sample_records, minidump):
        info = DumpFactExtractor(reader_factory=scripted_reader(**sample_records)).extract(minidump)

        assert info.dump_header.signature == "MINIDUMP"
        assert info.bug_check_info.code == 0x1E
        assert info.bug_check_info.source == "minidump_reader"
        assert info.exception_info.name == "ACCESS_VIOLATION"
        assert info.thread_context.thread_id == 0x1F4
        assert [m.name for m in info.module_list] == ["hal.dll", "ntoskrnl.exe", "Acme_Filter.sys", "nvlddmkm.sys"]

    def test_extractors_are_independent(self):
        data = build_minidump(extra=b"\x00ndis.sys\x00")

        info = DumpFactExtractor(reader_factory=failing_reader_factory).extract(data)

        assert info.dump_header is not None
        assert info.bug_check_info.code == 0x50
        assert [m.name for m in info.module_list] == ["ndis.sys"]
        assert info.exception_info is None
        assert info.thread_context is None

    def test_reader_built_once_per_call(self, sample_records, minidump):
        built = []

        def factory(data):
            built.append(data)
            return ScriptedMinidumpReader(**sample_records)

        info = DumpFactExtractor(reader_factory=factory).extract(minidump)

        assert len(built) == 1
        assert info.bug_check_info.source == "minidump_reader"
        assert info.exception_info is not None
        assert info.thread_context is not None
        assert info.module_list

    def test_reader_failure_attempted_once(self, minidump):
        attempts = []

        def factory(data):
            attempts.append(data)
            raise RuntimeError("Failed to parse minidump: truncated")

        info = DumpFactExtractor(reader_factory=factory).extract(minidump)

        assert len(attempts) == 1
        assert info.bug_check_info.source == "minidump_streams"
        assert info.exception_info is None
        assert info.thread_context is None

    def test_driver_findings(self, scripted_reader, sample_records, minidump):
        info = DumpFactExtractor(reader_factory=scripted_reader(**sample_records)).extract(minidump)

        assert [f.module_name for f in info.driver_findings] == ["nvlddmkm.sys"]
        # 0x1E is not among the NVIDIA driver's usual stop codes
        assert not info.driver_findings[0].matches_bug_check

    def test_garbage(self):
        info = extract_structured_dump_info(b"\x01\x02\x03")

        assert info.dump_header is None
        assert info.bug_check_info is None
        assert info.module_list == []

    def test_idempotent(self, legacy_kernel_dump):
        data = legacy_kernel_dump + b"\x00tcpip.sys\x00"

        assert extract_structured_dump_info(data) == extract_structured_dump_info(data)

    def test_input_not_mutated(self, full_kernel_dump):
        data = bytearray(full_kernel_dump)
        snapshot = bytes(data)

        extract_structured_dump_info(data)

        assert bytes(data) == snapshot


class TestDefaultMinidumpReader:
    """Extraction through the real minidump library."""

    def test_bug_check_from_library(self, minidump):
        info = extract_structured_dump_info(minidump)

        assert info.bug_check_info.source == "minidump_reader"
        assert info.bug_check_info.code == 0x50
        # Full 64-bit parameters, unlike the u32 stream walk
        assert info.bug_check_info.parameters == [0xFFFFF8000000DEAD, 0x1, 0xFFFFF80012340000, 0x2]

    def test_exception_from_library(self, minidump):
        info = extract_structured_dump_info(minidump)

        assert info.exception_info.code == 0x80000003
        assert info.exception_info.name == "BREAKPOINT"
        assert info.exception_info.thread_id == 0x1F4


class TestReadDumpFile:

    def test_reads_contents(self, tmp_path, minidump):
        path = tmp_path / "crash.dmp"
        path.write_bytes(minidump)

        assert read_dump_file(str(path)) == minidump

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_dump_file(str(tmp_path / "missing.dmp"))

    def test_empty(self, tmp_path):
        path = tmp_path / "empty.dmp"
        path.write_bytes(b"")

        with pytest.raises(ValueError, match="Empty dump file"):
            read_dump_file(str(path))

    def test_too_large(self, tmp_path, minidump):
        path = tmp_path / "crash.dmp"
        path.write_bytes(minidump)

        with pytest.raises(ValueError, match="too large"):
            read_dump_file(str(path), max_size=len(minidump) - 1)
