"""
Known problematic driver database.

Third-party and inbox drivers with a history of stability problems, the stop
codes they are commonly behind and what to do about them. Loaded once from
known_bad_drivers.json and shared read-only.
"""

import json
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from bsod_facts.core.models import DriverFinding, ModuleInfo


DRIVERS_PATH = Path(__file__).parent / "known_bad_drivers.json"


class DriverCategory(Enum):
    GRAPHICS = "graphics"
    AUDIO = "audio"
    NETWORK = "network"
    STORAGE = "storage"
    SECURITY = "security"
    VIRTUALIZATION = "virtualization"
    OTHER = "other"


@dataclass(frozen=True)
class ProblematicDriver:
    """Knowledge base record for one driver file."""

    name: str
    display_name: str
    manufacturer: str
    category: DriverCategory
    issues: Tuple[str, ...] = ()
    common_bug_checks: Tuple[int, ...] = ()
    recommendations: Tuple[str, ...] = ()


def _parse_driver(name: str, raw: dict) -> ProblematicDriver:
    return ProblematicDriver(
        name=name,
        display_name=raw["display_name"],
        manufacturer=raw["manufacturer"],
        category=DriverCategory(raw["category"]),
        issues=tuple(raw.get("issues", ())),
        common_bug_checks=tuple(int(code, 16) for code in raw.get("common_bug_checks", ())),
        recommendations=tuple(raw.get("recommendations", ())),
    )


@lru_cache(maxsize=1)
def load_known_drivers() -> Dict[str, ProblematicDriver]:
    """Load the driver table keyed by lower-cased file name. Parsed once per process."""
    with open(DRIVERS_PATH, "r", encoding="utf-8") as f:
        raw_drivers = json.load(f)

    drivers = {name.lower(): _parse_driver(name, raw) for name, raw in raw_drivers.items()}
    logger.debug(f"Loaded {len(drivers)} known problematic drivers from {DRIVERS_PATH.name}")
    return drivers


def _normalize(driver_name: str) -> str:
    name = driver_name.lower()
    if name.endswith(".sys"):
        name = name[:-4]
    return name + ".sys"


def find_problematic_driver(driver_name: str) -> Optional[ProblematicDriver]:
    """Look up a driver by file name, with or without the .sys extension."""
    if not driver_name:
        return None
    return load_known_drivers().get(_normalize(driver_name))


def get_drivers_for_bug_check(code: int) -> List[ProblematicDriver]:
    """Drivers commonly behind a given stop code, in table order."""
    return [d for d in load_known_drivers().values() if code in d.common_bug_checks]


def categorize_modules(module_names: Iterable[str]) -> Dict[DriverCategory, List[str]]:
    """Group the known problematic drivers among ``module_names`` by category."""
    result: Dict[DriverCategory, List[str]] = {category: [] for category in DriverCategory}
    for name in module_names:
        driver = find_problematic_driver(name)
        if driver:
            result[driver.category].append(name)
    return result


def find_problematic_drivers(modules: Iterable[ModuleInfo], bug_check_code: Optional[int] = None) -> List[DriverFinding]:
    """Flag loaded modules that are known problematic drivers.

    Args:
        modules: Extracted module list
        bug_check_code: Stop code of the crash, if one was found

    Returns:
        One finding per matching module, in module order. ``matches_bug_check``
        is set when the driver is commonly behind ``bug_check_code``.
    """
    findings = []
    for module in modules:
        driver = find_problematic_driver(module.name)
        if driver is None:
            continue

        matches = bug_check_code is not None and bug_check_code in driver.common_bug_checks
        findings.append(
            DriverFinding(
                module_name=module.name,
                display_name=driver.display_name,
                manufacturer=driver.manufacturer,
                category=driver.category.value,
                issues=list(driver.issues),
                recommendations=list(driver.recommendations),
                matches_bug_check=matches,
            )
        )

    if findings:
        logger.info(
            f"Found {len(findings)} known problematic drivers, "
            f"{sum(f.matches_bug_check for f in findings)} associated with the bug check"
        )
    return findings
