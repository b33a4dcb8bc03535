"""
Structured minidump reader.

Uses the skelsec/minidump library to parse the module, thread and exception
streams of an in-memory minidump, and exposes them as typed records so the
extractors do not depend on the library's object shapes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from loguru import logger

from bsod_facts.core.binary_reader import BinaryReader


KERNEL_BREAKPOINT = 0x80000003

# x64 CONTEXT register offsets
CONTEXT_X64_SIZE = 0x4D0
CONTEXT_X64_RSP = 0x98
CONTEXT_X64_RBP = 0xA0
CONTEXT_X64_RIP = 0xF8


@dataclass
class MinidumpBugCheck:
    code: int
    parameters: List[int]


@dataclass
class MinidumpModuleRecord:
    name: str
    base_address: int
    size: int
    timestamp: Optional[int] = None
    checksum: Optional[int] = None


@dataclass
class RegisterContext:
    rip: int = 0
    rsp: int = 0
    rbp: int = 0


@dataclass
class MinidumpThreadRecord:
    thread_id: int
    priority: Optional[int] = None
    context: Optional[RegisterContext] = None


@dataclass
class MinidumpExceptionRecord:
    exception_code: int
    exception_address: int
    exception_information: List[int] = field(default_factory=list)
    thread_id: Optional[int] = None
    exception_flags: Optional[int] = None


class IMinidumpReader(ABC):
    """Structured minidump reader interface."""

    @abstractmethod
    def get_bug_check_info(self) -> Optional[MinidumpBugCheck]:
        """Get the bug check encoded in the exception stream, if any."""
        pass

    @abstractmethod
    def get_modules(self) -> List[MinidumpModuleRecord]:
        """Get the module list stream."""
        pass

    @abstractmethod
    def get_threads(self) -> List[MinidumpThreadRecord]:
        """Get the thread list stream."""
        pass

    @abstractmethod
    def get_exception(self) -> Optional[MinidumpExceptionRecord]:
        """Get the first exception record."""
        pass


ReaderFactory = Callable[[bytes], IMinidumpReader]


def _as_int(value) -> int:
    """Library fields are sometimes enum members rather than plain ints."""
    return int(getattr(value, "value", value))


def _module_name(module) -> str:
    name = getattr(module, "name", None) or ""
    if isinstance(name, bytes):
        return name.decode("utf-8", errors="ignore")
    return str(name)


class MinidumpReader(IMinidumpReader):
    """Minidump reader using skelsec/minidump library."""

    def __init__(self, data: bytes):
        self._raw = BinaryReader(data)
        self._minidump = self._load_minidump(data)

    def _load_minidump(self, data: bytes):
        """Parse the minidump from memory."""
        try:
            from minidump.minidumpfile import MinidumpFile

            minidump = MinidumpFile.parse_bytes(bytes(data))
            logger.debug(f"Parsed minidump with skelsec/minidump ({len(data):,} bytes)")
            return minidump
        except ImportError as e:
            raise RuntimeError(
                f"minidump library not found. Install with: pip install minidump. Error: {e}"
            )
        except Exception as e:
            raise RuntimeError(f"Failed to parse minidump: {e}")

    def get_bug_check_info(self) -> Optional[MinidumpBugCheck]:
        exception = self.get_exception()
        if exception is None or exception.exception_code != KERNEL_BREAKPOINT:
            return None

        information = exception.exception_information
        if len(information) < 5:
            return None

        return MinidumpBugCheck(code=information[0], parameters=list(information[1:5]))

    def get_modules(self) -> List[MinidumpModuleRecord]:
        module_list = getattr(self._minidump, "modules", None)
        if module_list is None:
            return []

        records = []
        for module in module_list.modules:
            records.append(
                MinidumpModuleRecord(
                    name=_module_name(module),
                    base_address=_as_int(module.baseaddress),
                    size=_as_int(module.size),
                    timestamp=getattr(module, "timestamp", None),
                    checksum=getattr(module, "checksum", None),
                )
            )

        logger.debug(f"Minidump module stream lists {len(records)} modules")
        return records

    def get_threads(self) -> List[MinidumpThreadRecord]:
        thread_list = getattr(self._minidump, "threads", None)
        if thread_list is None:
            return []

        records = []
        for thread in thread_list.threads:
            records.append(
                MinidumpThreadRecord(
                    thread_id=_as_int(thread.ThreadId),
                    priority=getattr(thread, "Priority", None),
                    context=self._thread_registers(thread),
                )
            )
        return records

    def _thread_registers(self, thread) -> Optional[RegisterContext]:
        """Read RIP/RSP/RBP from the parsed context, or from the raw x64 CONTEXT."""
        context = getattr(thread, "ContextObject", None)
        if context is not None and hasattr(context, "Rip"):
            return RegisterContext(rip=context.Rip, rsp=context.Rsp, rbp=context.Rbp)

        location = getattr(thread, "ThreadContext", None)
        if location is None or location.DataSize < CONTEXT_X64_SIZE:
            return None

        rip = self._raw.u64(location.Rva + CONTEXT_X64_RIP)
        rsp = self._raw.u64(location.Rva + CONTEXT_X64_RSP)
        rbp = self._raw.u64(location.Rva + CONTEXT_X64_RBP)
        if rip is None or rsp is None or rbp is None:
            return None
        return RegisterContext(rip=rip, rsp=rsp, rbp=rbp)

    def get_exception(self) -> Optional[MinidumpExceptionRecord]:
        exception_list = getattr(self._minidump, "exception", None)
        if exception_list is None:
            return None

        streams = getattr(exception_list, "exception_records", None) or []
        if not streams:
            return None

        stream = streams[0]
        record = stream.ExceptionRecord
        code = getattr(record, "ExceptionCode_raw", record.ExceptionCode)

        return MinidumpExceptionRecord(
            exception_code=_as_int(code),
            exception_address=_as_int(record.ExceptionAddress),
            exception_information=[_as_int(v) for v in record.ExceptionInformation],
            thread_id=_as_int(stream.ThreadId),
            exception_flags=_as_int(record.ExceptionFlags),
        )


def open_minidump_reader(data: bytes) -> IMinidumpReader:
    """Default reader factory."""
    return MinidumpReader(data)


class SharedReaderFactory:
    """Reader factory that builds the reader once and hands it to every caller.

    A construction failure is remembered too, so every later call raises the
    same error without parsing the buffer again. Meant to live for a single
    extraction over a single buffer.
    """

    def __init__(self, factory: ReaderFactory):
        self._factory = factory
        self._built = False
        self._reader: Optional[IMinidumpReader] = None
        self._error: Optional[Exception] = None

    def __call__(self, data: bytes) -> IMinidumpReader:
        if not self._built:
            self._built = True
            try:
                self._reader = self._factory(data)
            except Exception as e:
                self._error = e

        if self._error is not None:
            raise self._error
        return self._reader
