"""
Shared fixtures: synthetic dump buffers and a scripted minidump reader.
"""
import os
import struct

import pytest

from bsod_facts.core.minidump_reader import (
    IMinidumpReader,
    MinidumpBugCheck,
    MinidumpExceptionRecord,
    MinidumpModuleRecord,
    MinidumpThreadRecord,
    RegisterContext,
)
from bsod_facts.utils.config import reload_config


IRQL_PARAMS = (0xFFFFF80012345678, 0x2, 0x0, 0xFFFFF80087654321)


def build_full_kernel_dump(code=0x0A, params=IRQL_PARAMS, size=0x2000):
    """PAGEDU64 buffer with a Windows 10 x64 header."""
    buf = bytearray(size)
    buf[0:8] = b"PAGEDU64"
    struct.pack_into("<I", buf, 0x0C, 0x0F)
    struct.pack_into("<I", buf, 0x10, 0x4A61)
    struct.pack_into("<Q", buf, 0x14, 0x1AD000)
    struct.pack_into("<Q", buf, 0x18, 0xFFFFFA8000000000)
    struct.pack_into("<Q", buf, 0x20, 0xFFFFF80002A4B8D0)
    struct.pack_into("<I", buf, 0x30, 0x8664)
    struct.pack_into("<I", buf, 0x38, code)
    for offset, value in zip((0x40, 0x48, 0x50, 0x58), params):
        struct.pack_into("<Q", buf, offset, value)
    return bytes(buf)


def build_legacy_kernel_dump(code=0xD1, params=(0x8, 0x2, 0x0, 0x8A3F1234), size=0x1000):
    """PAGEDUMP buffer with a 32-bit header."""
    buf = bytearray(size)
    buf[0:8] = b"PAGEDUMP"
    struct.pack_into("<I", buf, 0x08, 0x0F)
    struct.pack_into("<I", buf, 0x0C, 0x1DB1)
    struct.pack_into("<I", buf, 0x10, 0x185000)
    struct.pack_into("<I", buf, 0x14, 0x80000000)
    struct.pack_into("<I", buf, 0x18, 0x8055B1C0)
    struct.pack_into("<I", buf, 0x20, 0x014C)
    struct.pack_into("<I", buf, 0x40, code)
    for offset, value in zip((0x44, 0x48, 0x4C, 0x50), params):
        struct.pack_into("<I", buf, offset, value)
    return bytes(buf)


def build_minidump(
    exception_code=0x80000003,
    bug_check=(0x50, 0xFFFFF8000000DEAD, 0x1, 0xFFFFF80012340000, 0x2),
    size=1024,
    timestamp=1700000000,
    extra=b"",
):
    """MDMP buffer with a single exception stream."""
    buf = bytearray(size)
    struct.pack_into("<I", buf, 0, 0x504D444D)
    struct.pack_into("<I", buf, 4, 0xA793)
    struct.pack_into("<I", buf, 8, 1)
    struct.pack_into("<I", buf, 12, 32)
    struct.pack_into("<I", buf, 16, 0)
    struct.pack_into("<I", buf, 20, timestamp)

    rva = 44
    struct.pack_into("<III", buf, 32, 6, 168, rva)

    # MINIDUMP_EXCEPTION_STREAM: ThreadId, alignment, then the exception record
    struct.pack_into("<I", buf, rva, 0x1F4)
    record = rva + 8
    struct.pack_into("<I", buf, record, exception_code)
    struct.pack_into("<I", buf, record + 24, len(bug_check))
    for i, value in enumerate(bug_check):
        struct.pack_into("<Q", buf, record + 32 + i * 8, value)

    if extra:
        buf[600:600 + len(extra)] = extra
    return bytes(buf)


class ScriptedMinidumpReader(IMinidumpReader):
    """Minidump reader returning canned records."""

    def __init__(self, bug_check=None, modules=None, threads=None, exception=None):
        self.bug_check = bug_check
        self.modules = modules or []
        self.threads = threads or []
        self.exception = exception

    def get_bug_check_info(self):
        return self.bug_check

    def get_modules(self):
        return self.modules

    def get_threads(self):
        return self.threads

    def get_exception(self):
        return self.exception


def failing_reader_factory(data):
    raise RuntimeError("Failed to parse minidump: synthetic buffer")


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Drop any BSOD_FACTS_* settings from the environment and rebuild config."""
    for key in list(os.environ):
        if key.upper().startswith("BSOD_FACTS_"):
            monkeypatch.delenv(key, raising=False)
    reload_config()
    yield
    reload_config()


@pytest.fixture
def full_kernel_dump():
    return build_full_kernel_dump()


@pytest.fixture
def legacy_kernel_dump():
    return build_legacy_kernel_dump()


@pytest.fixture
def minidump():
    return build_minidump()


@pytest.fixture
def scripted_reader():
    """Factory for reader factories that always hand back the same scripted reader."""

    def make(**records):
        reader = ScriptedMinidumpReader(**records)
        return lambda data: reader

    return make


@pytest.fixture
def sample_records():
    return {
        "bug_check": MinidumpBugCheck(code=0x1E, parameters=[0xC0000005, 0xFFFFF80011112222, 0, 0x10]),
        "modules": [
            MinidumpModuleRecord("\\SystemRoot\\system32\\ntoskrnl.exe", 0xFFFFF80000000000, 0xA00000, 0x5F3E2A11, 0xA1B2C3),
            MinidumpModuleRecord("\\SystemRoot\\system32\\hal.dll", 0xFFFFF80000A00000, 0x100000),
            MinidumpModuleRecord("C:\\Windows\\System32\\drivers\\nvlddmkm.sys", 0xFFFFF80002000000, 0x2000000),
            MinidumpModuleRecord("\\SystemRoot\\System32\\drivers\\wxr.sys", 0xFFFFF80005000000, 0x1000),
            MinidumpModuleRecord("\\SystemRoot\\system32\\NTOSKRNL.EXE", 0xFFFFF80000000000, 0xA00000),
            MinidumpModuleRecord("\\SystemRoot\\System32\\drivers\\Acme_Filter.sys", 0xFFFFF80006000000, 0x8000),
        ],
        "threads": [
            MinidumpThreadRecord(0x1F4, 0, RegisterContext(rip=0xFFFFF80012345678, rsp=0xFFFFF8800ABC0000, rbp=0xFFFFF8800ABC0100)),
            MinidumpThreadRecord(0x1F8, 8, RegisterContext(rip=1, rsp=2, rbp=3)),
        ],
        "exception": MinidumpExceptionRecord(
            exception_code=0xC0000005,
            exception_address=0x7FF612340000,
            exception_information=[1, 0x10],
            thread_id=0x1F4,
            exception_flags=0,
        ),
    }
