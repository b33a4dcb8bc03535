"""
Bug check extraction.

Tries an ordered list of strategies against a raw dump buffer and returns the
first plausible stop code with its four parameters. Each strategy has the
same shape, ``(BinaryReader) -> Optional[BugCheckInfo]``, so the order is
just the order of the list.
"""

from typing import Callable, Iterable, List, Optional, Sequence

from loguru import logger

from bsod_facts.core.binary_reader import BinaryReader
from bsod_facts.core.bugcheck_kb import BUG_CHECK_CODES, get_bug_check_name
from bsod_facts.core.format_detector import (
    FullKernelDumpLayout,
    LegacyKernelDumpLayout,
    MinidumpLayout,
    is_full_kernel_dump,
    is_legacy_kernel_dump,
    is_minidump,
)
from bsod_facts.core.minidump_reader import KERNEL_BREAKPOINT, ReaderFactory, open_minidump_reader
from bsod_facts.core.models import BugCheckInfo
from bsod_facts.core.param_validator import BugCheckParameterValidator, IBugCheckParameterValidator
from bsod_facts.utils.config import get_config


# Values that keep turning up in corrupted dumps and are never real stop codes
FABRICATED_BUG_CHECK_CODES = frozenset({0x65F4})

MANUALLY_INITIATED_CRASH = 0xDEADDEAD
MANUALLY_INITIATED_CRASH1 = 0x0000DEAD

VALID_CODE_RANGES = (
    (0x00000001, 0x000001FF),
    (0x00001000, 0x00001FFF),
    (0xC0000000, 0xC0FFFFFF),
)

FULL_KERNEL_DUMP_MIN_SIZE = 0x2000

# Minidump stream directory
STREAM_ENTRY_SIZE = 12
EXCEPTION_STREAM = 6
EXCEPTION_STREAM_MIN_SIZE = 168

# Offsets inside MINIDUMP_EXCEPTION_STREAM, relative to the stream RVA
EXCEPTION_RECORD_OFFSET = 8
EXCEPTION_INFORMATION_OFFSET = 32
EXCEPTION_PARAMETER_OFFSETS = (40, 48, 56, 64)

SCAN_MIN_SIZE = 512
SCAN_ALIGNMENT = 4
SCAN_TAIL = 20
SCAN_PARAMETER_OFFSETS = (8, 16, 24, 32)


def _fabricated_codes() -> frozenset:
    extra = get_config().extra_fabricated_bug_check_codes
    return FABRICATED_BUG_CHECK_CODES.union(extra) if extra else FABRICATED_BUG_CHECK_CODES


def is_valid_bug_check_code(code: Optional[int]) -> bool:
    """Check whether a value is a plausible stop code.

    Denylisted fabricated values are always rejected. Otherwise a code is
    plausible when catalogued, inside one of the documented stop code
    ranges, or one of the manually-initiated crash codes.
    """
    if code is None:
        return False
    if code in _fabricated_codes():
        return False
    if code in BUG_CHECK_CODES:
        return True
    if any(low <= code <= high for low, high in VALID_CODE_RANGES):
        return True
    return code in (MANUALLY_INITIATED_CRASH, MANUALLY_INITIATED_CRASH1)


Strategy = Callable[[BinaryReader], Optional[BugCheckInfo]]


class BugCheckExtractor:
    """Extracts the stop code and parameters from a dump buffer."""

    def __init__(
        self,
        reader_factory: ReaderFactory = open_minidump_reader,
        validator: Optional[IBugCheckParameterValidator] = None,
        scan_bytes: Optional[int] = None,
    ):
        """
        Initialize the extractor.

        Args:
            reader_factory: Builds a structured minidump reader from the raw buffer
            validator: Parameter validator used to judge every result
            scan_bytes: How far into the buffer the byte scan looks
        """
        self.reader_factory = reader_factory
        self.validator = validator or BugCheckParameterValidator()
        self.scan_bytes = scan_bytes if scan_bytes is not None else get_config().bugcheck_scan_bytes
        self.strategies: List[Strategy] = [
            self._from_full_kernel_dump,
            self._from_legacy_kernel_dump,
            self._from_minidump_reader,
            self._from_minidump_streams,
            self._from_byte_scan,
        ]

    def extract(self, data) -> Optional[BugCheckInfo]:
        """Run the strategies in order. Never raises."""
        reader = data if isinstance(data, BinaryReader) else BinaryReader(data)

        for strategy in self.strategies:
            try:
                result = strategy(reader)
            except Exception as e:
                logger.debug(f"Bug check strategy {strategy.__name__} failed: {e}")
                continue

            if result is not None:
                logger.info(f"Bug check 0x{result.code:X} ({result.name}) found via {result.source}")
                return result

        logger.debug("No bug check found")
        return None

    def _build(self, code: int, parameters: Sequence[int], source: str) -> BugCheckInfo:
        p1, p2, p3, p4 = parameters
        return BugCheckInfo(
            code=code,
            name=get_bug_check_name(code),
            parameter1=p1,
            parameter2=p2,
            parameter3=p3,
            parameter4=p4,
            validation=self.validator.validate(code, p1, p2, p3, p4),
            analysis=self.validator.analyze(code, [p1, p2, p3, p4]),
            source=source,
        )

    def _read_header_bug_check(
        self, reader: BinaryReader, code_offset: int, parameter_offsets: Iterable[int], read, source: str
    ) -> Optional[BugCheckInfo]:
        code = reader.u32(code_offset)
        if not is_valid_bug_check_code(code):
            if code is not None and code in _fabricated_codes():
                logger.warning(f"Rejected fabricated bug check code 0x{code:X} in {source} header")
            return None

        parameters = [read(offset) for offset in parameter_offsets]
        if any(p is None for p in parameters):
            return None
        return self._build(code, parameters, source)

    def _from_full_kernel_dump(self, reader: BinaryReader) -> Optional[BugCheckInfo]:
        if not is_full_kernel_dump(reader) or reader.size < FULL_KERNEL_DUMP_MIN_SIZE:
            return None
        return self._read_header_bug_check(
            reader,
            FullKernelDumpLayout.BUGCHECK_CODE,
            FullKernelDumpLayout.BUGCHECK_PARAMETERS,
            reader.u64,
            "full_kernel_dump",
        )

    def _from_legacy_kernel_dump(self, reader: BinaryReader) -> Optional[BugCheckInfo]:
        if not is_legacy_kernel_dump(reader):
            return None
        return self._read_header_bug_check(
            reader,
            LegacyKernelDumpLayout.BUGCHECK_CODE,
            LegacyKernelDumpLayout.BUGCHECK_PARAMETERS,
            reader.u32,
            "legacy_kernel_dump",
        )

    def _from_minidump_reader(self, reader: BinaryReader) -> Optional[BugCheckInfo]:
        if not is_minidump(reader):
            return None

        try:
            bug_check = self.reader_factory(reader.data).get_bug_check_info()
        except Exception as e:
            logger.debug(f"Minidump reader could not provide a bug check: {e}")
            return None

        if bug_check is None or not is_valid_bug_check_code(bug_check.code):
            return None

        parameters = (list(bug_check.parameters) + [0, 0, 0, 0])[:4]
        return self._build(bug_check.code, parameters, "minidump_reader")

    def _from_minidump_streams(self, reader: BinaryReader) -> Optional[BugCheckInfo]:
        if not is_minidump(reader):
            return None

        stream_count = reader.u32(MinidumpLayout.STREAM_COUNT)
        directory = reader.u32(MinidumpLayout.STREAM_DIRECTORY)
        if stream_count is None or directory is None:
            return None

        for index in range(stream_count):
            entry = directory + index * STREAM_ENTRY_SIZE
            if not reader.fits(entry, STREAM_ENTRY_SIZE):
                break

            stream_type = reader.u32(entry)
            rva = reader.u32(entry + 8)
            if stream_type != EXCEPTION_STREAM or rva + EXCEPTION_STREAM_MIN_SIZE >= reader.size:
                continue

            record = rva + EXCEPTION_RECORD_OFFSET
            if reader.u32(record) != KERNEL_BREAKPOINT:
                continue

            code = reader.u32(record + EXCEPTION_INFORMATION_OFFSET)
            if not is_valid_bug_check_code(code):
                continue

            parameters = [reader.u32(record + offset) for offset in EXCEPTION_PARAMETER_OFFSETS]
            if any(p is None for p in parameters):
                continue
            return self._build(code, parameters, "minidump_streams")

        return None

    def _from_byte_scan(self, reader: BinaryReader) -> Optional[BugCheckInfo]:
        if reader.size < SCAN_MIN_SIZE:
            return None

        limit = min(self.scan_bytes, reader.size) - SCAN_TAIL
        for offset in range(0, limit, SCAN_ALIGNMENT):
            code = reader.u32(offset)
            if not is_valid_bug_check_code(code):
                continue

            parameters = [reader.u32(offset + delta) for delta in SCAN_PARAMETER_OFFSETS]
            if any(p is None for p in parameters):
                continue
            # Zero padding
            if parameters[0] == 0 and parameters[1] == 0:
                continue

            logger.debug(f"Byte scan matched stop code 0x{code:X} at offset 0x{offset:X}")
            return self._build(code, parameters, "byte_scan")

        return None


def extract_bug_check(data) -> Optional[BugCheckInfo]:
    """Extract the bug check from a dump buffer with the default collaborators."""
    return BugCheckExtractor().extract(data)
