"""
Dump fact extraction.

Runs every extractor over one in-memory dump buffer and gathers the results
into a single StructuredDumpInfo. The extractors are independent; any of
them may come back empty without affecting the others.
"""

from pathlib import Path
from typing import Optional

from loguru import logger

from bsod_facts.core.binary_reader import BinaryReader
from bsod_facts.core.bugcheck_extractor import BugCheckExtractor
from bsod_facts.core.context_extractor import extract_exception_info, extract_thread_context
from bsod_facts.core.format_detector import detect_format, extract_header
from bsod_facts.core.minidump_reader import ReaderFactory, SharedReaderFactory, open_minidump_reader
from bsod_facts.core.models import DumpFormat, StructuredDumpInfo
from bsod_facts.core.module_extractor import ModuleExtractor
from bsod_facts.core.param_validator import IBugCheckParameterValidator
from bsod_facts.knowledge.known_drivers import find_problematic_drivers


class DumpFactExtractor:
    """Extracts structured facts from a crash dump buffer."""

    def __init__(
        self,
        reader_factory: ReaderFactory = open_minidump_reader,
        validator: Optional[IBugCheckParameterValidator] = None,
    ):
        self.reader_factory = reader_factory
        self.validator = validator

    def extract(self, data) -> StructuredDumpInfo:
        """Extract every available fact. Never raises."""
        reader = data if isinstance(data, BinaryReader) else BinaryReader(data)

        dump_format = detect_format(reader)
        if dump_format == DumpFormat.UNKNOWN:
            logger.debug("Unrecognised dump signature, falling back to content scans")
        else:
            logger.info(f"Detected {dump_format.value} ({reader.size:,} bytes)")

        # One minidump parse per call, shared by every extractor
        reader_factory = SharedReaderFactory(self.reader_factory)
        bug_check = BugCheckExtractor(reader_factory=reader_factory, validator=self.validator).extract(reader)
        modules = ModuleExtractor(reader_factory=reader_factory).extract(reader)

        return StructuredDumpInfo(
            dump_header=extract_header(reader),
            exception_info=extract_exception_info(reader, reader_factory),
            bug_check_info=bug_check,
            module_list=modules,
            thread_context=extract_thread_context(reader, reader_factory),
            driver_findings=find_problematic_drivers(modules, bug_check.code if bug_check else None),
        )


def extract_structured_dump_info(data) -> StructuredDumpInfo:
    """Extract structured facts from a dump buffer with the default collaborators.

    Args:
        data: Raw dump bytes

    Returns:
        StructuredDumpInfo with every fact that could be recovered

    Example:
        >>> info = extract_structured_dump_info(Path("crash.dmp").read_bytes())
        >>> if info.bug_check_info:
        ...     print(f"Bugcheck: 0x{info.bug_check_info.code:X}")
    """
    return DumpFactExtractor().extract(data)


def read_dump_file(file_path: str, max_size: Optional[int] = None) -> bytes:
    """Read a dump file from disk.

    Args:
        file_path: Path to the dump file
        max_size: Largest accepted file size in bytes, if any

    Returns:
        The file contents

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If the file is empty or larger than max_size
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Dump file not found: {path}")

    size = path.stat().st_size
    if size == 0:
        raise ValueError(f"Empty dump file: {path}")

    if max_size is not None and size > max_size:
        raise ValueError(f"Dump file too large: {path} ({size:,} bytes, limit {max_size:,})")

    logger.debug(f"Reading dump file: {path} ({size:,} bytes)")
    return path.read_bytes()
