"""
Exception and thread context extraction.

Both facts only exist in minidumps and come from the structured minidump
reader. Any failure means the fact is absent.
"""

from typing import Optional

from loguru import logger

from bsod_facts.core.binary_reader import BinaryReader
from bsod_facts.core.bugcheck_kb import get_exception_name
from bsod_facts.core.format_detector import is_minidump
from bsod_facts.core.minidump_reader import ReaderFactory, open_minidump_reader
from bsod_facts.core.models import ExceptionInfo, ThreadContext


def _minidump_bytes(data) -> Optional[bytes]:
    reader = data if isinstance(data, BinaryReader) else BinaryReader(data)
    return reader.data if is_minidump(reader) else None


def extract_exception_info(data, reader_factory: ReaderFactory = open_minidump_reader) -> Optional[ExceptionInfo]:
    """Get the faulting exception of a minidump.

    Args:
        data: Raw dump buffer
        reader_factory: Builds the structured minidump reader

    Returns:
        The first exception record, or None for other formats and on any
        reader failure
    """
    raw = _minidump_bytes(data)
    if raw is None:
        return None

    try:
        record = reader_factory(raw).get_exception()
    except Exception as e:
        logger.debug(f"Minidump reader could not provide an exception record: {e}")
        return None

    if record is None:
        return None

    information = list(record.exception_information) + [0, 0]
    exception = ExceptionInfo(
        code=record.exception_code,
        name=get_exception_name(record.exception_code),
        address=record.exception_address,
        parameter1=information[0],
        parameter2=information[1],
        thread_id=record.thread_id,
        flags=record.exception_flags,
    )
    logger.info(f"Exception 0x{exception.code:X} ({exception.name}) at 0x{exception.address:X}")
    return exception


def extract_thread_context(data, reader_factory: ReaderFactory = open_minidump_reader) -> Optional[ThreadContext]:
    """Get the register state of the first thread of a minidump."""
    raw = _minidump_bytes(data)
    if raw is None:
        return None

    try:
        threads = reader_factory(raw).get_threads()
    except Exception as e:
        logger.debug(f"Minidump reader could not provide threads: {e}")
        return None

    if not threads:
        return None

    thread = threads[0]
    registers = thread.context
    return ThreadContext(
        thread_id=thread.thread_id,
        instruction_pointer=registers.rip if registers else 0,
        stack_pointer=registers.rsp if registers else 0,
        frame_pointer=registers.rbp if registers else 0,
        priority=thread.priority,
    )
