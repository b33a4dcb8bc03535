"""
Crash pattern knowledge base.

Per-stop-code descriptions of the four bug check parameters, common causes,
diagnostic steps and remediation, loaded once from crash_patterns.json and
shared read-only. Also holds the secondary decoder tables used to explain
individual parameter values and the rules that map a stop code to an
investigation strategy.
"""

import json
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from loguru import logger

from bsod_facts.core.models import Severity


PATTERNS_PATH = Path(__file__).parent / "crash_patterns.json"


@dataclass(frozen=True)
class ParameterDescription:
    name: str
    description: str


@dataclass(frozen=True)
class MemoryPattern:
    pattern: str
    meaning: str


@dataclass(frozen=True)
class CrashPattern:
    """Knowledge base record for one stop code."""

    code: int
    name: str
    parameters: Tuple[ParameterDescription, ParameterDescription, ParameterDescription, ParameterDescription]
    common_causes: Tuple[str, ...] = ()
    diagnostic_steps: Tuple[str, ...] = ()
    immediate_actions: Tuple[str, ...] = ()
    memory_patterns: Optional[Tuple[MemoryPattern, ...]] = None
    related_drivers: Optional[Tuple[str, ...]] = None
    kernel_structures: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class AnalysisStrategy:
    """Where to look first for a given class of stop code."""

    priority: Severity
    focus_areas: Tuple[str, ...] = field(default_factory=tuple)
    tools_needed: Tuple[str, ...] = field(default_factory=tuple)


IRQL_NAMES = {
    0: "PASSIVE_LEVEL",
    1: "APC_LEVEL",
    2: "DISPATCH_LEVEL",
    3: "CMCI_LEVEL",
    4: "DEVICE_LEVEL",
    11: "HIGH_LEVEL",
}

# BAD_POOL_CALLER parameter 1
POOL_VIOLATION_TYPES = {
    0x00: "Unknown pool corruption",
    0x01: "Pool header corruption",
    0x02: "Pool header size corruption",
    0x06: "Attempt to free pool at invalid address",
    0x07: "Attempt to free pool already freed",
    0x08: "Quota process pointer corrupt",
    0x09: "Pool allocation contains ERESOURCE",
    0x0A: "Attempt to free pool with active timer",
    0x0B: "Memory manager structures corrupt",
    0x0C: "Attempt to mix session pool and other pool",
    0x41: "Pool quota cookie corrupt",
    0x42: "Pool freed by wrong thread",
    0x43: "Pool double freed",
    0x44: "Pool corrupted by driver using it after free",
    0x46: "Pool tracked table corrupt",
    0x47: "Pool tracking structures corrupt",
    0x48: "Cannot find pool allocation in tracker",
    0x49: "Pool allocation not tracked",
    0x99: "Pool page header corrupt",
}

# KERNEL_SECURITY_CHECK_FAILURE parameter 1
FAST_FAIL_TYPES = {
    0x00: "Unknown security check failure",
    0x01: "FAST_FAIL_GUARD_ICALL_CHECK_FAILURE",
    0x02: "FAST_FAIL_STACK_COOKIE_CHECK_FAILURE",
    0x03: "FAST_FAIL_CORRUPT_LIST_ENTRY",
    0x04: "FAST_FAIL_INCORRECT_STACK",
    0x05: "FAST_FAIL_INVALID_ARG",
    0x06: "FAST_FAIL_GS_COOKIE_INIT",
    0x07: "FAST_FAIL_FATAL_APP_EXIT",
    0x08: "FAST_FAIL_RANGE_CHECK_FAILURE",
    0x09: "FAST_FAIL_UNSAFE_REGISTRY_ACCESS",
    0x0A: "FAST_FAIL_GUARD_ICALL_CHECK_SUPPRESSED",
    0x0B: "FAST_FAIL_INVALID_FIBER_SWITCH",
    0x0C: "FAST_FAIL_INVALID_SET_OF_CONTEXT",
    0x0D: "FAST_FAIL_INVALID_REFERENCE_COUNT",
    0x14: "FAST_FAIL_INVALID_JUMP_BUFFER",
    0x15: "FAST_FAIL_MRDATA_MODIFIED",
    0x16: "FAST_FAIL_CERTIFICATION_FAILURE",
    0x17: "FAST_FAIL_INVALID_EXCEPTION_CHAIN",
    0x18: "FAST_FAIL_CRYPTO_LIBRARY",
    0x19: "FAST_FAIL_INVALID_CALL_IN_DLL_CALLOUT",
    0x1A: "FAST_FAIL_INVALID_IMAGE_BASE",
    0x1B: "FAST_FAIL_DLOAD_PROTECTION_FAILURE",
    0x1C: "FAST_FAIL_UNSAFE_EXTENSION_CALL",
}

PAGE_FAULT_ACCESS_TYPES = {
    0: "Read",
    1: "Write",
    2: "Execute",
    10: "Execute (DEP violation)",
}

HARDWARE_CODES = frozenset({0x124, 0x9C, 0x101, 0x19, 0x1A})
SECURITY_CODES = frozenset({0x139, 0x109, 0x18C, 0x18E})
DRIVER_CODES = frozenset({0xD1, 0x0A, 0xC4, 0xC9, 0xDA})

IRQL_NOT_LESS_OR_EQUAL = 0x0A
DRIVER_IRQL_NOT_LESS_OR_EQUAL = 0xD1
PAGE_FAULT_IN_NONPAGED_AREA = 0x50
BAD_POOL_CALLER = 0xC2
KERNEL_SECURITY_CHECK_FAILURE = 0x139

_STRATEGIES = {
    "hardware": AnalysisStrategy(
        priority=Severity.CRITICAL,
        focus_areas=("Hardware diagnostics", "Temperature monitoring", "Power supply", "Memory testing"),
        tools_needed=("MemTest86+", "CPU stress test", "Hardware monitor", "SMART disk check"),
    ),
    "security": AnalysisStrategy(
        priority=Severity.HIGH,
        focus_areas=("Security mitigation", "Exploit detection", "Driver verification", "Malware scan"),
        tools_needed=("Driver Verifier", "Anti-malware tools", "System file checker", "Security logs"),
    ),
    "driver": AnalysisStrategy(
        priority=Severity.MEDIUM,
        focus_areas=("Driver analysis", "IRQL verification", "Pool tracking", "Stack analysis"),
        tools_needed=("Driver Verifier", "Pool monitor", "IRP tracker", "Device Manager"),
    ),
    "generic": AnalysisStrategy(
        priority=Severity.MEDIUM,
        focus_areas=("General system health", "Recent changes", "Event logs", "Driver updates"),
        tools_needed=("Event Viewer", "System restore", "Update checker", "Safe mode"),
    ),
}


def _optional_tuple(values) -> Optional[tuple]:
    return tuple(values) if values is not None else None


def _parse_pattern(key: str, raw: dict) -> CrashPattern:
    params = tuple(ParameterDescription(p["name"], p["description"]) for p in raw["parameters"])
    if len(params) != 4:
        raise ValueError(f"Crash pattern {key} must describe exactly 4 parameters, got {len(params)}")

    memory_patterns = raw.get("memory_patterns")
    return CrashPattern(
        code=int(key, 16),
        name=raw["name"],
        parameters=params,
        common_causes=tuple(raw.get("common_causes", ())),
        diagnostic_steps=tuple(raw.get("diagnostic_steps", ())),
        immediate_actions=tuple(raw.get("immediate_actions", ())),
        memory_patterns=(
            tuple(MemoryPattern(m["pattern"], m["meaning"]) for m in memory_patterns)
            if memory_patterns is not None
            else None
        ),
        related_drivers=_optional_tuple(raw.get("related_drivers")),
        kernel_structures=_optional_tuple(raw.get("kernel_structures")),
    )


@lru_cache(maxsize=1)
def load_crash_patterns() -> Dict[int, CrashPattern]:
    """Load the crash pattern table. Parsed once per process."""
    with open(PATTERNS_PATH, "r", encoding="utf-8") as f:
        raw_patterns = json.load(f)

    patterns = {}
    for key, raw in raw_patterns.items():
        pattern = _parse_pattern(key, raw)
        patterns[pattern.code] = pattern

    logger.debug(f"Loaded {len(patterns)} crash patterns from {PATTERNS_PATH.name}")
    return patterns


def get_crash_pattern(code: int) -> Optional[CrashPattern]:
    return load_crash_patterns().get(code)


def get_irql_name(irql: int) -> str:
    return IRQL_NAMES.get(irql, f"IRQL {irql}")


def get_pool_violation_type(violation: int) -> str:
    return POOL_VIOLATION_TYPES.get(violation, f"Pool violation type 0x{violation:x}")


def get_fast_fail_type(check_type: int) -> str:
    return FAST_FAIL_TYPES.get(check_type, f"Security check type 0x{check_type:x}")


def _access_type(value: int) -> str:
    if value == 0:
        return "Read"
    if value == 1:
        return "Write"
    return "Execute"


def _secondary_decode(code: int, param_index: int, value: int) -> str:
    if code in (IRQL_NOT_LESS_OR_EQUAL, DRIVER_IRQL_NOT_LESS_OR_EQUAL):
        if param_index == 2:
            return f"IRQL Level: {get_irql_name(value)}"
        if param_index == 3:
            return f"Access Type: {_access_type(value)}"
    elif code == PAGE_FAULT_IN_NONPAGED_AREA:
        if param_index == 2 and value in PAGE_FAULT_ACCESS_TYPES:
            return f"Access Type: {PAGE_FAULT_ACCESS_TYPES[value]}"
    elif code == BAD_POOL_CALLER:
        if param_index == 1:
            return get_pool_violation_type(value)
    elif code == KERNEL_SECURITY_CHECK_FAILURE:
        if param_index == 1:
            return get_fast_fail_type(value)
    return ""


def get_parameter_explanation(code: int, param_index: int, value: int) -> str:
    """Explain one bug check parameter value in plain text.

    Args:
        code: Bug check code
        param_index: Parameter number, 1 to 4
        value: Raw parameter value

    Returns:
        The parameter's name and meaning, its value, and a code-specific decode
        of the value where one exists.

    Raises:
        ValueError: If param_index is not between 1 and 4
    """
    if param_index not in (1, 2, 3, 4):
        raise ValueError(f"Parameter index must be 1-4, got {param_index}")

    pattern = get_crash_pattern(code)
    if pattern is None:
        return f"Unknown parameter for bug check 0x{code:x}"

    param = pattern.parameters[param_index - 1]
    explanation = f"{param.name}: {param.description}\n"
    explanation += f"Value: 0x{value:x}\n"
    explanation += _secondary_decode(code, param_index, value)
    return explanation


def get_analysis_strategy(code: int) -> AnalysisStrategy:
    """Classify a stop code into hardware, security, driver or generic investigation."""
    if code in HARDWARE_CODES:
        return _STRATEGIES["hardware"]
    if code in SECURITY_CODES:
        return _STRATEGIES["security"]
    if code in DRIVER_CODES:
        return _STRATEGIES["driver"]
    return _STRATEGIES["generic"]
