"""
Bug check parameter validation and analysis.

Judges whether the four parameters of a stop code are plausible for that
code and derives a short interpretation with a severity and likely causes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence, Tuple

from bsod_facts.core.models import ModuleInfo, ParameterAnalysis, ParameterValidation, Severity


USER_SPACE_LIMIT = 0x7FFFFFFFFFFF
KERNEL_SPACE_BASE = 0xFFFF800000000000
MAX_MODULE_SIZE = 0x10000000

ACCESS_VIOLATION = 0xC0000005
STACK_OVERFLOW = 0xC00000FD

KNOWN_EXCEPTION_CODES = frozenset({
    0xC0000005,  # ACCESS_VIOLATION
    0xC00000FD,  # STACK_OVERFLOW
    0xC0000094,  # INTEGER_DIVIDE_BY_ZERO
    0xC0000096,  # PRIVILEGED_INSTRUCTION
    0x80000003,  # BREAKPOINT
    0x80000004,  # SINGLE_STEP
    0xC000001D,  # ILLEGAL_INSTRUCTION
    0xC0000025,  # NONCONTINUABLE_EXCEPTION
    0xC00000E1,  # STATUS_VIRUS_INFECTED
    0xC0000420,  # STATUS_ASSERTION_FAILURE
})

POOL_PROBLEM_TYPES = frozenset({
    0x01, 0x02, 0x04, 0x05, 0x06, 0x07, 0x08, 0x09,
    0x0A, 0x0B, 0x0C, 0x0D, 0x40, 0x41, 0x42, 0x43,
    0x44, 0x45, 0x46, 0x47, 0x48, 0x49, 0x99,
})

FILTER_MANAGER_ERRORS = frozenset({0x66, 0x67, 0x68, 0x6B, 0x6C, 0x6D, 0x6E, 0x6F, 0x7A})

SECURITY_CHECK_TYPES = frozenset({0x0, 0x1, 0x2, 0x3, 0x4, 0x5, 0x6, 0x8, 0xA})

MEMORY_ACCESS_TYPES = frozenset({0, 1, 8})
PAGE_PROTECTIONS = frozenset({0, 1, 8, 10})


def is_valid_address(address: int) -> bool:
    """Non-null and in either the user or the canonical kernel half of x64 space."""
    return address > 0 and (address < USER_SPACE_LIMIT or address >= KERNEL_SPACE_BASE)


def is_valid_irql(irql: int) -> bool:
    return 0 <= irql <= 31


def _access_name(value: int) -> str:
    if value == 0:
        return "Read"
    if value == 1:
        return "Write"
    return "Execute"


Rule = Callable[[Sequence[int]], List[str]]


@dataclass(frozen=True)
class ParameterRule:
    name: str
    descriptions: Tuple[str, str, str, str]
    check: Rule


def _check_irql_not_less_or_equal(params: Sequence[int]) -> List[str]:
    errors = []
    if not is_valid_address(params[0]):
        errors.append(f"Invalid memory address: 0x{params[0]:x}")
    if not is_valid_irql(params[1]):
        errors.append(f"Invalid IRQL value: {params[1]}")
    if params[2] not in MEMORY_ACCESS_TYPES:
        errors.append(f"Invalid access type: {params[2]} (expected 0, 1, or 8)")
    if not is_valid_address(params[3]):
        errors.append(f"Invalid instruction address: 0x{params[3]:x}")
    return errors


def _check_kmode_exception(params: Sequence[int]) -> List[str]:
    errors = []
    if params[0] not in KNOWN_EXCEPTION_CODES:
        errors.append(f"Unknown exception code: 0x{params[0]:x}")
    if not is_valid_address(params[1]):
        errors.append(f"Invalid exception address: 0x{params[1]:x}")
    if params[0] == ACCESS_VIOLATION:
        if params[2] not in MEMORY_ACCESS_TYPES:
            errors.append(f"Invalid access violation type: {params[2]}")
        if not is_valid_address(params[3]):
            errors.append(f"Invalid access violation address: 0x{params[3]:x}")
    return errors


def _check_page_fault(params: Sequence[int]) -> List[str]:
    errors = []
    if not is_valid_address(params[0]):
        errors.append(f"Invalid referenced address: 0x{params[0]:x}")
    if params[1] not in PAGE_PROTECTIONS:
        errors.append(f"Invalid page protection: {params[1]}")
    # Zero when the faulting instruction is unknown
    if params[2] != 0 and not is_valid_address(params[2]):
        errors.append(f"Invalid instruction address: 0x{params[2]:x}")
    return errors


def _check_system_thread_exception(params: Sequence[int]) -> List[str]:
    errors = []
    if params[0] not in KNOWN_EXCEPTION_CODES:
        errors.append(f"Invalid exception code: 0x{params[0]:x}")
    if not is_valid_address(params[1]):
        errors.append(f"Invalid exception address: 0x{params[1]:x}")
    if not is_valid_address(params[2]):
        errors.append(f"Invalid exception record address: 0x{params[2]:x}")
    if not is_valid_address(params[3]):
        errors.append(f"Invalid context record address: 0x{params[3]:x}")
    return errors


def _check_bad_pool_caller(params: Sequence[int]) -> List[str]:
    errors = []
    problem = params[0]
    if problem not in POOL_PROBLEM_TYPES:
        errors.append(f"Unknown pool problem type: 0x{problem:x}")

    if problem in (0x01, 0x02):
        if params[1] == 0:
            errors.append("Pool tag should not be zero")
    elif 0x40 <= problem <= 0x49:
        if not is_valid_address(params[1]):
            errors.append(f"Invalid pool address: 0x{params[1]:x}")
    return errors


def _check_driver_irql(params: Sequence[int]) -> List[str]:
    errors = []
    if not is_valid_address(params[0]):
        errors.append(f"Invalid memory address: 0x{params[0]:x}")
    # Raised only above DISPATCH_LEVEL
    if params[1] <= 2 or not is_valid_irql(params[1]):
        errors.append(f"Invalid IRQL for DRIVER_IRQL_NOT_LESS_OR_EQUAL: {params[1]}")
    if params[2] not in MEMORY_ACCESS_TYPES:
        errors.append(f"Invalid access type: {params[2]}")
    if not is_valid_address(params[3]):
        errors.append(f"Invalid instruction address: 0x{params[3]:x}")
    return errors


def _check_fltmgr(params: Sequence[int]) -> List[str]:
    errors = []
    if params[0] not in FILTER_MANAGER_ERRORS:
        errors.append(f"Unknown filter manager error code: 0x{params[0]:x}")
    if params[1] != 0 and not is_valid_address(params[1]):
        errors.append(f"Invalid FLT_OBJECT address: 0x{params[1]:x}")
    return errors


def _check_security_failure(params: Sequence[int]) -> List[str]:
    errors = []
    check_type = params[0]
    if check_type not in SECURITY_CHECK_TYPES:
        errors.append(f"Unknown security check type: 0x{check_type:x}")
    if check_type in (0x0, 0x1) and not is_valid_address(params[1]):
        errors.append(f"Invalid stack address: 0x{params[1]:x}")
    if params[2] != 0 and not is_valid_address(params[2]):
        errors.append(f"Invalid exception record: 0x{params[2]:x}")
    if params[3] != 0 and not is_valid_address(params[3]):
        errors.append(f"Invalid context record: 0x{params[3]:x}")
    return errors


PARAMETER_RULES: Dict[int, ParameterRule] = {
    0x0A: ParameterRule(
        "IRQL_NOT_LESS_OR_EQUAL",
        (
            "Address that was referenced",
            "IRQL at time of reference",
            "Access type: 0=Read, 1=Write, 8=Execute",
            "Address of instruction that referenced",
        ),
        _check_irql_not_less_or_equal,
    ),
    0x1E: ParameterRule(
        "KMODE_EXCEPTION_NOT_HANDLED",
        (
            "Exception code",
            "Address where exception occurred",
            "Exception parameter 0",
            "Exception parameter 1",
        ),
        _check_kmode_exception,
    ),
    0x50: ParameterRule(
        "PAGE_FAULT_IN_NONPAGED_AREA",
        (
            "Address referenced",
            "Page protection (0=Read, 1=Write, 8=Execute, 10=ExecuteRead)",
            "Address of instruction (if known)",
            "Reserved",
        ),
        _check_page_fault,
    ),
    0x7E: ParameterRule(
        "SYSTEM_THREAD_EXCEPTION_NOT_HANDLED",
        (
            "Exception code",
            "Address where exception occurred",
            "Exception record address",
            "Context record address",
        ),
        _check_system_thread_exception,
    ),
    0xC2: ParameterRule(
        "BAD_POOL_CALLER",
        (
            "Pool type and allocation type",
            "Pool tag or address being freed",
            "Pool address or size",
            "Reserved",
        ),
        _check_bad_pool_caller,
    ),
    0xD1: ParameterRule(
        "DRIVER_IRQL_NOT_LESS_OR_EQUAL",
        (
            "Address referenced",
            "IRQL at time of reference",
            "Access type: 0=Read, 1=Write, 8=Execute",
            "Address that referenced",
        ),
        _check_driver_irql,
    ),
    0xF5: ParameterRule(
        "FLTMGR_FILE_SYSTEM",
        (
            "Filter manager error code",
            "FLT_OBJECT causing the error",
            "Reserved",
            "Reserved",
        ),
        _check_fltmgr,
    ),
    0x139: ParameterRule(
        "KERNEL_SECURITY_CHECK_FAILURE",
        (
            "Security check type",
            "Address of failure",
            "Exception record (if applicable)",
            "Context record (if applicable)",
        ),
        _check_security_failure,
    ),
}


class IBugCheckParameterValidator(ABC):
    """Parameter validator/analyzer interface."""

    @abstractmethod
    def validate(self, code: int, p1: int, p2: int, p3: int, p4: int) -> ParameterValidation:
        """Check the parameters are plausible for the stop code."""
        pass

    @abstractmethod
    def analyze(self, code: int, params: Sequence[int]) -> ParameterAnalysis:
        """Interpret the parameters."""
        pass


class BugCheckParameterValidator(IBugCheckParameterValidator):
    """Rule-based validator for the most common stop codes."""

    def __init__(self, rules: Dict[int, ParameterRule] = None):
        self.rules = rules if rules is not None else PARAMETER_RULES

    def validate(self, code: int, p1: int, p2: int, p3: int, p4: int) -> ParameterValidation:
        rule = self.rules.get(code)
        params = [p1, p2, p3, p4]

        if rule is None:
            errors = [f"Parameter {i} is negative: {p}" for i, p in enumerate(params, 1) if p < 0]
            return ParameterValidation(
                valid=not errors,
                errors=errors,
                description="Unknown bug check code - basic validation only",
            )

        errors = rule.check(params)
        description = "\n".join(f"P{i}: {desc}" for i, desc in enumerate(rule.descriptions, 1))
        return ParameterValidation(valid=not errors, errors=errors, description=description)

    def analyze(self, code: int, params: Sequence[int]) -> ParameterAnalysis:
        rule = self.rules.get(code)
        if rule is None:
            return ParameterAnalysis(
                analysis="Unknown bug check code",
                severity=Severity.MEDIUM,
                likely_causes=["Unknown system error"],
            )

        p = list(params) + [0] * (4 - len(params))
        analysis = f"{rule.name}:\n"
        causes: List[str] = []
        severity = Severity.HIGH

        if code == 0x0A:
            analysis += f"Memory access at 0x{p[0]:x} from IRQL {p[1]}\n"
            analysis += f"Access type: {_access_name(p[2])}\n"
            analysis += f"Faulting instruction: 0x{p[3]:x}"
            if p[1] >= 2:
                causes.append("Driver attempting paged pool access at DISPATCH_LEVEL or above")
                severity = Severity.CRITICAL
            if p[0] < 0x10000:
                causes.append("NULL pointer dereference")
                causes.append("Uninitialized pointer usage")

        elif code == 0x1E:
            analysis += f"Exception code: 0x{p[0]:x}\n"
            analysis += f"Exception at: 0x{p[1]:x}"
            if p[0] == ACCESS_VIOLATION:
                analysis += "\nAccess Violation:\n"
                analysis += f"  Type: {_access_name(p[2])}\n"
                analysis += f"  Address: 0x{p[3]:x}"
                causes.extend(["Invalid memory access", "Use after free", "Buffer overflow"])
            elif p[0] == STACK_OVERFLOW:
                causes.extend(["Stack overflow", "Infinite recursion"])
                severity = Severity.CRITICAL

        elif code == 0x50:
            analysis += f"Failed to access: 0x{p[0]:x}\n"
            analysis += f"Operation: {_access_name(p[1])}"
            if p[0] >= KERNEL_SPACE_BASE:
                causes.extend(["System memory corruption", "Invalid system space reference"])
                severity = Severity.CRITICAL
            else:
                causes.extend(["Paged out memory accessed at high IRQL", "MDL corruption"])

        elif code == 0xF5:
            analysis += f"Filter Manager error: 0x{p[0]:x}\n"
            if p[0] == 0x66:
                causes.append("Invalid context registration in minifilter")
            elif p[0] == 0x6F:
                causes.append("Minifilter altitude conflict")
            elif p[0] == 0x7A:
                causes.append("File system filter name cache corruption")
                severity = Severity.CRITICAL

        return ParameterAnalysis(analysis=analysis, severity=severity, likely_causes=causes)


def find_module_overlaps(modules: Sequence[ModuleInfo]) -> List[str]:
    """Report modules whose address ranges overlap or look implausible.

    Modules with an unknown (zero) base are ignored.
    """
    placed = sorted((m for m in modules if m.base), key=lambda m: m.base)
    errors = []

    for current, following in zip(placed, placed[1:]):
        end = current.base + current.size
        if end > following.base:
            errors.append(
                f"Module overlap: {current.name} (0x{current.base:x}-0x{end:x}) "
                f"overlaps with {following.name} (0x{following.base:x})"
            )

    for module in placed:
        if not is_valid_address(module.base):
            errors.append(f"Invalid module base address for {module.name}: 0x{module.base:x}")
        if module.size <= 0 or module.size > MAX_MODULE_SIZE:
            errors.append(f"Invalid module size for {module.name}: {module.size} bytes")

    return errors
