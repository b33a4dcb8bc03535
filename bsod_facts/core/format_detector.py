"""
Dump format detection and fixed header decoding.

Recognises three Windows crash dump containers by their leading signature:
- PAGEDU64: 64-bit full/kernel memory dump (DUMP_HEADER64)
- PAGEDUMP: legacy 32-bit kernel dump (DUMP_HEADER32)
- MDMP: stream-directory based minidump
"""

from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from bsod_facts.core.binary_reader import BinaryReader
from bsod_facts.core.models import DumpFormat, DumpHeader, FileValidationResult


SIGNATURE_PAGEDU64 = b"PAGEDU64"
SIGNATURE_PAGE = 0x45474150  # "PAGE"
SIGNATURE_DUMP = 0x504D5544  # "DUMP"
SIGNATURE_MDMP = 0x504D444D  # "MDMP"

MIN_VALIDATION_SIZE = 8

# Smallest buffer each header decoder accepts
HEADER_MIN_SIZE = {
    DumpFormat.FULL_KERNEL_DUMP: 0x38,
    DumpFormat.LEGACY_KERNEL_DUMP: 0x24,
    DumpFormat.MINIDUMP: 0x20,
}

# Machine image type constants
IMAGE_FILE_MACHINE_I386 = 0x014C
IMAGE_FILE_MACHINE_AMD64 = 0x8664
IMAGE_FILE_MACHINE_IA64 = 0x0200
IMAGE_FILE_MACHINE_ARM64 = 0xAA64

MACHINE_TYPE_NAMES = {
    IMAGE_FILE_MACHINE_AMD64: "AMD64",
    IMAGE_FILE_MACHINE_I386: "I386",
    IMAGE_FILE_MACHINE_IA64: "IA64",
    IMAGE_FILE_MACHINE_ARM64: "ARM64",
}


class FullKernelDumpLayout:
    """PAGEDU64 header offsets. The bug check code is at 0x38, not 0x80."""

    MAJOR_VERSION = 0x0C
    MINOR_VERSION = 0x10
    DIRECTORY_TABLE_BASE = 0x14
    PFN_DATABASE = 0x18
    PS_LOADED_MODULE_LIST = 0x20
    MACHINE_IMAGE_TYPE = 0x30
    BUGCHECK_CODE = 0x38
    BUGCHECK_PARAMETERS = (0x40, 0x48, 0x50, 0x58)


class LegacyKernelDumpLayout:
    """PAGEDUMP (DUMP_HEADER32) header offsets."""

    MAJOR_VERSION = 0x08
    MINOR_VERSION = 0x0C
    DIRECTORY_TABLE_BASE = 0x10
    PFN_DATABASE = 0x14
    PS_LOADED_MODULE_LIST = 0x18
    MACHINE_IMAGE_TYPE = 0x20
    BUGCHECK_CODE = 0x40
    BUGCHECK_PARAMETERS = (0x44, 0x48, 0x4C, 0x50)


class MinidumpLayout:
    """MINIDUMP_HEADER offsets."""

    VERSION = 4
    STREAM_COUNT = 8
    STREAM_DIRECTORY = 12
    CHECKSUM = 16
    TIMESTAMP = 20


def _as_reader(data) -> BinaryReader:
    return data if isinstance(data, BinaryReader) else BinaryReader(data)


def is_full_kernel_dump(reader: BinaryReader) -> bool:
    return reader.bytes_at(0, 8) == SIGNATURE_PAGEDU64


def is_legacy_kernel_dump(reader: BinaryReader) -> bool:
    return reader.u32(0) == SIGNATURE_PAGE and reader.u32(4) == SIGNATURE_DUMP


def is_minidump(reader: BinaryReader) -> bool:
    return reader.u32(0) == SIGNATURE_MDMP


def detect_format(data) -> DumpFormat:
    """Classify a buffer by its leading signature. Never raises."""
    reader = _as_reader(data)

    if is_full_kernel_dump(reader):
        return DumpFormat.FULL_KERNEL_DUMP
    if is_legacy_kernel_dump(reader):
        return DumpFormat.LEGACY_KERNEL_DUMP
    if is_minidump(reader):
        return DumpFormat.MINIDUMP
    return DumpFormat.UNKNOWN


def describe_machine_type(machine: Optional[int]) -> str:
    """Map a machine image type to an architecture name."""
    if machine is None:
        return "UNKNOWN"
    return MACHINE_TYPE_NAMES.get(machine, f"UNKNOWN(0x{machine:X})")


def _all_present(*values) -> bool:
    return all(value is not None for value in values)


def _full_kernel_header(reader: BinaryReader) -> Optional[DumpHeader]:
    layout = FullKernelDumpLayout
    header = DumpHeader(
        signature="PAGEDU64",
        major_version=reader.u32(layout.MAJOR_VERSION),
        minor_version=reader.u32(layout.MINOR_VERSION),
        machine_image_type=reader.u32(layout.MACHINE_IMAGE_TYPE),
        directory_table_base=reader.u64(layout.DIRECTORY_TABLE_BASE),
        pfn_database=reader.u64(layout.PFN_DATABASE),
        ps_loaded_module_list=reader.u64(layout.PS_LOADED_MODULE_LIST),
    )
    if not _all_present(
        header.major_version,
        header.minor_version,
        header.machine_image_type,
        header.directory_table_base,
        header.pfn_database,
        header.ps_loaded_module_list,
    ):
        return None
    return header


def _legacy_kernel_header(reader: BinaryReader) -> Optional[DumpHeader]:
    layout = LegacyKernelDumpLayout
    header = DumpHeader(
        signature="PAGEDUMP",
        major_version=reader.u32(layout.MAJOR_VERSION),
        minor_version=reader.u32(layout.MINOR_VERSION),
        machine_image_type=reader.u32(layout.MACHINE_IMAGE_TYPE),
        directory_table_base=reader.u32(layout.DIRECTORY_TABLE_BASE),
        pfn_database=reader.u32(layout.PFN_DATABASE),
        ps_loaded_module_list=reader.u32(layout.PS_LOADED_MODULE_LIST),
    )
    if not _all_present(
        header.major_version,
        header.minor_version,
        header.machine_image_type,
        header.directory_table_base,
        header.pfn_database,
        header.ps_loaded_module_list,
    ):
        return None
    return header


def _minidump_header(reader: BinaryReader) -> Optional[DumpHeader]:
    layout = MinidumpLayout
    timestamp = reader.u32(layout.TIMESTAMP)
    header = DumpHeader(
        signature="MINIDUMP",
        version=reader.u32(layout.VERSION),
        stream_count=reader.u32(layout.STREAM_COUNT),
        stream_directory=reader.u32(layout.STREAM_DIRECTORY),
        checksum=reader.u32(layout.CHECKSUM),
        timestamp=datetime.fromtimestamp(timestamp, tz=timezone.utc) if timestamp is not None else None,
    )
    if not _all_present(header.version, header.stream_count, header.stream_directory, header.checksum, timestamp):
        return None
    return header


_HEADER_DECODERS = {
    DumpFormat.FULL_KERNEL_DUMP: _full_kernel_header,
    DumpFormat.LEGACY_KERNEL_DUMP: _legacy_kernel_header,
    DumpFormat.MINIDUMP: _minidump_header,
}


def extract_header(data) -> Optional[DumpHeader]:
    """Decode the fixed header of a recognised dump.

    Returns None for unknown formats, buffers shorter than the format's
    minimum header size, or headers with fields outside the buffer.
    """
    reader = _as_reader(data)
    dump_format = detect_format(reader)

    decoder = _HEADER_DECODERS.get(dump_format)
    if decoder is None:
        return None

    if reader.size < HEADER_MIN_SIZE[dump_format]:
        logger.debug(f"Buffer too small for {dump_format.value} header: {reader.size} bytes")
        return None

    header = decoder(reader)
    if header is None:
        logger.debug(f"Truncated {dump_format.value} header")
    return header


def validate_dump_file(data) -> FileValidationResult:
    """Cheap signature check run before extraction is attempted."""
    if data is None or len(data) < MIN_VALIDATION_SIZE:
        return FileValidationResult(is_valid=False, error="File too small to be a valid dump file")

    reader = _as_reader(data)

    if is_full_kernel_dump(reader):
        return FileValidationResult(is_valid=True, file_type="PAGEDU64 (Full/Kernel Dump)")

    if is_minidump(reader):
        return FileValidationResult(is_valid=True, file_type="MINIDUMP")

    if reader.u32(0) == SIGNATURE_PAGE:
        return FileValidationResult(is_valid=True, file_type="PAGEDUMP (Kernel Dump)")

    return FileValidationResult(is_valid=False, error="Unrecognized dump file format")
