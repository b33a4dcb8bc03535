"""
Module extractor.

Recovers loaded driver/module names from a dump, either from the minidump
module list or by scanning the raw bytes for driver file names, and filters
out names that are known to be fabricated by corrupted data.
"""

import re
from pathlib import PureWindowsPath
from typing import Iterable, List, Optional

from loguru import logger

from bsod_facts.core.binary_reader import BinaryReader
from bsod_facts.core.format_detector import is_minidump
from bsod_facts.core.minidump_reader import ReaderFactory, open_minidump_reader
from bsod_facts.core.models import ModuleInfo
from bsod_facts.core.param_validator import find_module_overlaps
from bsod_facts.utils.config import get_config


# Names that corrupted dumps produce and no real driver uses
FABRICATED_MODULE_NAMES = frozenset({
    "wxr.sys",
    "web.sys",
    "vs.sys",
    "xxx.sys",
    "test.sys",
    "unknown.sys",
    "fake.sys",
    "temp.sys",
    "dummy.sys",
})

# Core Windows modules, listed first in results
SYSTEM_MODULES = (
    "ntoskrnl.exe",
    "hal.dll",
    "win32k.sys",
    "win32kbase.sys",
    "win32kfull.sys",
    "tcpip.sys",
    "ndis.sys",
    "fltmgr.sys",
    "ntfs.sys",
    "volsnap.sys",
    "storport.sys",
    "ataport.sys",
    "classpnp.sys",
    "disk.sys",
    "partmgr.sys",
    "volmgr.sys",
    "acpi.sys",
    "pci.sys",
    "usbport.sys",
    "usbhub.sys",
    "hidusb.sys",
    "kbdclass.sys",
    "mouclass.sys",
    "i8042prt.sys",
)
_SYSTEM_MODULE_SET = frozenset(SYSTEM_MODULES)

MODULE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+\.(sys|dll|exe)$", re.IGNORECASE)
MODULE_SCAN_PATTERN = re.compile(r"[A-Za-z0-9_-]+\.(?:sys|dll|exe)", re.IGNORECASE)

MIN_NAME_LENGTH = 4
MAX_NAME_LENGTH = 64


def _fabricated_names() -> frozenset:
    extra = get_config().extra_fabricated_module_names
    if not extra:
        return FABRICATED_MODULE_NAMES
    return FABRICATED_MODULE_NAMES.union(name.lower() for name in extra)


def is_legitimate_module_name(name: Optional[str]) -> bool:
    """Check that a module name looks like a real driver or image file name."""
    if not name:
        return False
    if name.lower() in _fabricated_names():
        return False
    if not MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
        return False
    if not all(0x20 <= ord(ch) <= 0x7E for ch in name):
        return False
    return MODULE_NAME_PATTERN.fullmatch(name) is not None


def is_system_module(name: str) -> bool:
    """Check if a module is one of the core Windows modules."""
    return name.lower() in _SYSTEM_MODULE_SET


def sort_modules(modules: Iterable[ModuleInfo]) -> List[ModuleInfo]:
    """Core Windows modules first, then the rest alphabetically."""
    return sorted(modules, key=lambda m: (not is_system_module(m.name), m.name.lower()))


def module_basename(path: str) -> str:
    """Last component of a Windows or POSIX style path."""
    return PureWindowsPath(path).name if path else ""


class ModuleExtractor:
    """Extracts the loaded module list from a dump buffer."""

    def __init__(
        self,
        reader_factory: ReaderFactory = open_minidump_reader,
        limit: Optional[int] = None,
        scan_bytes: Optional[int] = None,
    ):
        config = get_config()
        self.reader_factory = reader_factory
        self.limit = limit if limit is not None else config.module_limit
        self.scan_bytes = scan_bytes if scan_bytes is not None else config.module_scan_bytes

    def extract(self, data) -> List[ModuleInfo]:
        """Extract modules. Never raises; an empty list means nothing credible was found."""
        reader = data if isinstance(data, BinaryReader) else BinaryReader(data)

        modules: List[ModuleInfo] = []
        if is_minidump(reader):
            modules = self._from_minidump_reader(reader)

        if not modules:
            modules = self._from_byte_scan(reader)

        modules = sort_modules(modules)
        logger.info(f"Found {len(modules)} modules")
        return modules

    def _accept(self, modules: List[ModuleInfo], seen: set, module: ModuleInfo) -> bool:
        """Append a module unless it is fabricated or a duplicate. Returns False once full."""
        if len(modules) >= self.limit:
            return False

        if not is_legitimate_module_name(module.name):
            if module.name.lower() in _fabricated_names():
                logger.warning(f"Rejected fabricated module name: {module.name}")
            return True

        key = module.name.lower()
        if key not in seen:
            seen.add(key)
            modules.append(module)
        return len(modules) < self.limit

    def _from_minidump_reader(self, reader: BinaryReader) -> List[ModuleInfo]:
        try:
            records = self.reader_factory(reader.data).get_modules()
        except Exception as e:
            logger.debug(f"Minidump reader could not provide modules: {e}")
            return []

        modules: List[ModuleInfo] = []
        seen: set = set()
        for record in records:
            module = ModuleInfo(
                name=module_basename(record.name),
                base=record.base_address,
                size=record.size,
                timestamp=record.timestamp,
                checksum=record.checksum,
            )
            if not self._accept(modules, seen, module):
                break

        overlaps = find_module_overlaps(modules)
        for problem in overlaps:
            logger.debug(problem)

        return modules

    def _from_byte_scan(self, reader: BinaryReader) -> List[ModuleInfo]:
        window = reader.data[:self.scan_bytes]
        text = window.decode("ascii", errors="replace")

        modules: List[ModuleInfo] = []
        seen: set = set()
        for match in MODULE_SCAN_PATTERN.finditer(text):
            module = ModuleInfo(name=match.group(0), base=0, size=0, timestamp=0, checksum=0)
            if not self._accept(modules, seen, module):
                break

        logger.debug(f"Byte scan matched {len(modules)} module names")
        return modules


def extract_modules(data) -> List[ModuleInfo]:
    """Extract modules from a dump buffer with the default minidump reader."""
    return ModuleExtractor().extract(data)
