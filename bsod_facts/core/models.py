"""
Data models for BSOD fact extraction.

Defines the records produced for one dump buffer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from enum import Enum


class DumpFormat(Enum):
    """Dump container formats recognised by their leading signature."""

    UNKNOWN = "unknown"
    LEGACY_KERNEL_DUMP = "legacy_kernel_dump"
    FULL_KERNEL_DUMP = "full_kernel_dump"
    MINIDUMP = "minidump"


class Severity(Enum):
    """Severity assigned to a bug check by parameter analysis."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class DumpHeader:
    """Fixed-layout header fields. Not every format populates every slot."""

    signature: str
    major_version: Optional[int] = None
    minor_version: Optional[int] = None
    machine_image_type: Optional[int] = None
    directory_table_base: Optional[int] = None
    pfn_database: Optional[int] = None
    ps_loaded_module_list: Optional[int] = None
    version: Optional[int] = None
    stream_count: Optional[int] = None
    stream_directory: Optional[int] = None
    checksum: Optional[int] = None
    timestamp: Optional[datetime] = None


@dataclass
class ParameterValidation:
    """Plausibility verdict on a bug check's four parameters."""

    valid: bool
    errors: List[str] = field(default_factory=list)
    description: Optional[str] = None


@dataclass
class ParameterAnalysis:
    """Interpretation of a bug check's parameters."""

    analysis: str
    severity: Severity = Severity.MEDIUM
    likely_causes: List[str] = field(default_factory=list)


@dataclass
class BugCheckInfo:
    """Stop code, its parameters and the judgment of their plausibility."""

    code: int
    name: str
    parameter1: int
    parameter2: int
    parameter3: int
    parameter4: int
    validation: ParameterValidation
    analysis: ParameterAnalysis
    source: str = ""

    @property
    def parameters(self) -> List[int]:
        return [self.parameter1, self.parameter2, self.parameter3, self.parameter4]


@dataclass
class ExceptionInfo:
    """Faulting exception record."""

    code: int
    name: str
    address: int
    parameter1: int
    parameter2: int
    thread_id: Optional[int] = None
    flags: Optional[int] = None


@dataclass
class ModuleInfo:
    """Loaded driver/module. Zero base and size mean the layout was unavailable."""

    name: str
    base: int
    size: int
    timestamp: Optional[int] = None
    checksum: Optional[int] = None


@dataclass
class ThreadContext:
    """Register state of the faulting thread."""

    thread_id: int
    instruction_pointer: int
    stack_pointer: int
    frame_pointer: int
    page_table_base: Optional[int] = None
    last_error: Optional[int] = None
    priority: Optional[int] = None


@dataclass
class DriverFinding:
    """Loaded module that matches a known problematic driver."""

    module_name: str
    display_name: str
    manufacturer: str
    category: str
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    matches_bug_check: bool = False


@dataclass
class StructuredDumpInfo:
    """Every fact recovered from one dump buffer."""

    dump_header: Optional[DumpHeader] = None
    exception_info: Optional[ExceptionInfo] = None
    bug_check_info: Optional[BugCheckInfo] = None
    module_list: List[ModuleInfo] = field(default_factory=list)
    thread_context: Optional[ThreadContext] = None
    driver_findings: List[DriverFinding] = field(default_factory=list)


@dataclass
class FileValidationResult:
    """Outcome of the cheap signature check run before extraction."""

    is_valid: bool
    file_type: Optional[str] = None
    error: Optional[str] = None
