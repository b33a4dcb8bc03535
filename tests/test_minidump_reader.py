"""
Tests for the structured minidump reader.
"""
import struct
import sys
from types import SimpleNamespace

import pytest

from bsod_facts.core.minidump_reader import (
    CONTEXT_X64_RBP,
    CONTEXT_X64_RIP,
    CONTEXT_X64_RSP,
    KERNEL_BREAKPOINT,
    MinidumpReader,
    SharedReaderFactory,
)
from conftest import ScriptedMinidumpReader, build_minidump


def mock_exception(code, information, thread_id=0x1F4):
    record = SimpleNamespace(
        ExceptionCode=code,
        ExceptionFlags=0,
        ExceptionAddress=0xFFFFF80012345678,
        ExceptionInformation=information,
    )
    return SimpleNamespace(exception_records=[SimpleNamespace(ThreadId=thread_id, ExceptionRecord=record)])


def mock_minidump(exception=None, modules=None, threads=None):
    return SimpleNamespace(
        exception=exception,
        modules=SimpleNamespace(modules=modules) if modules is not None else None,
        threads=SimpleNamespace(threads=threads) if threads is not None else None,
    )


def make_reader(monkeypatch, parsed, data=b"MDMP" + bytes(60)):
    monkeypatch.setattr(MinidumpReader, "_load_minidump", lambda self, raw: parsed)
    return MinidumpReader(data)


class TestBugCheck:

    def test_breakpoint_with_bug_check(self, monkeypatch):
        parsed = mock_minidump(exception=mock_exception(0x80000003, [0x0A, 0x10, 2, 0, 0xFFFFF80087654321]))

        bug_check = make_reader(monkeypatch, parsed).get_bug_check_info()

        assert bug_check.code == 0x0A
        assert bug_check.parameters == [0x10, 2, 0, 0xFFFFF80087654321]

    def test_other_exception(self, monkeypatch):
        parsed = mock_minidump(exception=mock_exception(0xC0000005, [0, 0x10]))

        assert make_reader(monkeypatch, parsed).get_bug_check_info() is None

    def test_too_few_parameters(self, monkeypatch):
        parsed = mock_minidump(exception=mock_exception(0x80000003, [0x0A, 0x10]))

        assert make_reader(monkeypatch, parsed).get_bug_check_info() is None

    def test_no_exception_stream(self, monkeypatch):
        assert make_reader(monkeypatch, mock_minidump()).get_bug_check_info() is None


def test_exception_record(monkeypatch):
    parsed = mock_minidump(exception=mock_exception(0xC0000005, [1, 0x20], thread_id=77))

    record = make_reader(monkeypatch, parsed).get_exception()

    assert record.exception_code == 0xC0000005
    assert record.exception_address == 0xFFFFF80012345678
    assert record.exception_information == [1, 0x20]
    assert record.thread_id == 77


def test_modules(monkeypatch):
    modules = [
        SimpleNamespace(name="C:\\Windows\\System32\\ntoskrnl.exe", baseaddress=0xFFFFF80000000000, size=0xA00000, timestamp=1, checksum=2),
        SimpleNamespace(name=b"\\SystemRoot\\System32\\drivers\\disk.sys", baseaddress=0xFFFFF80001000000, size=0x10000),
    ]

    records = make_reader(monkeypatch, mock_minidump(modules=modules)).get_modules()

    assert [r.name for r in records] == ["C:\\Windows\\System32\\ntoskrnl.exe", "\\SystemRoot\\System32\\drivers\\disk.sys"]
    assert records[0].base_address == 0xFFFFF80000000000
    assert records[0].timestamp == 1
    assert records[1].checksum is None


class TestThreads:

    def test_parsed_context(self, monkeypatch):
        thread = SimpleNamespace(ThreadId=4, Priority=8, ContextObject=SimpleNamespace(Rip=0x10, Rsp=0x20, Rbp=0x30))

        records = make_reader(monkeypatch, mock_minidump(threads=[thread])).get_threads()

        assert records[0].thread_id == 4
        assert records[0].priority == 8
        assert (records[0].context.rip, records[0].context.rsp, records[0].context.rbp) == (0x10, 0x20, 0x30)

    def test_raw_context(self, monkeypatch):
        rva = 0x100
        data = bytearray(rva + 0x4D0)
        data[0:4] = b"MDMP"
        struct.pack_into("<Q", data, rva + CONTEXT_X64_RIP, 0xFFFFF80012345678)
        struct.pack_into("<Q", data, rva + CONTEXT_X64_RSP, 0xFFFFF8800ABC0000)
        struct.pack_into("<Q", data, rva + CONTEXT_X64_RBP, 0xFFFFF8800ABC0100)
        thread = SimpleNamespace(ThreadId=4, Priority=0, ThreadContext=SimpleNamespace(DataSize=0x4D0, Rva=rva))

        records = make_reader(monkeypatch, mock_minidump(threads=[thread]), bytes(data)).get_threads()

        assert records[0].context.rip == 0xFFFFF80012345678
        assert records[0].context.rsp == 0xFFFFF8800ABC0000
        assert records[0].context.rbp == 0xFFFFF8800ABC0100

    def test_short_context(self, monkeypatch):
        thread = SimpleNamespace(ThreadId=4, ThreadContext=SimpleNamespace(DataSize=0x100, Rva=0))

        records = make_reader(monkeypatch, mock_minidump(threads=[thread])).get_threads()

        assert records[0].context is None
        assert records[0].priority is None


def test_missing_library_raises_runtime_error(monkeypatch):
    monkeypatch.setitem(sys.modules, "minidump.minidumpfile", None)

    with pytest.raises(RuntimeError, match="minidump library not found"):
        MinidumpReader(b"MDMP" + bytes(60))


class TestLibraryParse:
    """Synthetic minidumps parsed by the real minidump library."""

    def test_exception(self):
        record = MinidumpReader(build_minidump()).get_exception()

        assert record.exception_code == KERNEL_BREAKPOINT
        assert record.thread_id == 0x1F4
        assert record.exception_flags == 0
        assert record.exception_information[:5] == [0x50, 0xFFFFF8000000DEAD, 0x1, 0xFFFFF80012340000, 0x2]

    def test_bug_check(self):
        bug_check = MinidumpReader(build_minidump()).get_bug_check_info()

        assert bug_check.code == 0x50
        assert bug_check.parameters == [0xFFFFF8000000DEAD, 0x1, 0xFFFFF80012340000, 0x2]

    def test_non_breakpoint_exception(self):
        reader = MinidumpReader(build_minidump(exception_code=0xC0000005))

        assert reader.get_exception().exception_code == 0xC0000005
        assert reader.get_bug_check_info() is None


class TestSharedReaderFactory:

    def test_builds_once(self):
        built = []

        def factory(data):
            built.append(data)
            return ScriptedMinidumpReader()

        shared = SharedReaderFactory(factory)

        assert shared(b"MDMP") is shared(b"MDMP")
        assert len(built) == 1

    def test_failure_remembered(self):
        attempts = []

        def factory(data):
            attempts.append(data)
            raise RuntimeError("Failed to parse minidump: bad stream")

        shared = SharedReaderFactory(factory)

        for _ in range(3):
            with pytest.raises(RuntimeError, match="bad stream"):
                shared(b"MDMP")
        assert len(attempts) == 1
