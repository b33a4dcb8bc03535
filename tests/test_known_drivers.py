"""
Tests for the known problematic driver database.
"""
from bsod_facts.core.models import ModuleInfo
from bsod_facts.core.parser import DumpFactExtractor
from bsod_facts.knowledge.known_drivers import (
    DriverCategory,
    categorize_modules,
    find_problematic_driver,
    find_problematic_drivers,
    get_drivers_for_bug_check,
    load_known_drivers,
)
from bsod_facts.utils.formatters import format_structured_dump_info, format_text_output
from conftest import build_legacy_kernel_dump, failing_reader_factory


def module(name):
    return ModuleInfo(name=name, base=0, size=0)


class TestLookup:

    def test_table_loaded(self):
        drivers = load_known_drivers()

        assert len(drivers) == 30
        assert "iastorac.sys" in drivers
        assert drivers["iastorac.sys"].name == "iaStorAC.sys"

    def test_case_insensitive(self):
        driver = find_problematic_driver("NVLDDMKM.SYS")

        assert driver.display_name == "NVIDIA Display Driver"
        assert driver.category == DriverCategory.GRAPHICS
        assert 0x116 in driver.common_bug_checks

    def test_extension_optional(self):
        assert find_problematic_driver("klif").name == "klif.sys"

    def test_unknown(self):
        assert find_problematic_driver("ntoskrnl.exe") is None
        assert find_problematic_driver("") is None


def test_drivers_for_bug_check():
    names = [d.name for d in get_drivers_for_bug_check(0x116)]

    assert names == ["nvlddmkm.sys", "atikmdag.sys", "amdkmdag.sys", "igdkmd64.sys"]
    assert get_drivers_for_bug_check(0x300) == []


def test_categorize_modules():
    result = categorize_modules(["nvlddmkm.sys", "RtkVHD64.sys", "ntoskrnl.exe", "klif.sys"])

    assert result[DriverCategory.GRAPHICS] == ["nvlddmkm.sys"]
    assert result[DriverCategory.AUDIO] == ["RtkVHD64.sys"]
    assert result[DriverCategory.SECURITY] == ["klif.sys"]
    assert result[DriverCategory.NETWORK] == []


class TestFindProblematicDrivers:

    def test_flags_modules_against_bug_check(self):
        modules = [module("ntoskrnl.exe"), module("nvlddmkm.sys"), module("rtkvhd64.sys")]

        findings = find_problematic_drivers(modules, 0x116)

        assert [f.module_name for f in findings] == ["nvlddmkm.sys", "rtkvhd64.sys"]
        assert [f.matches_bug_check for f in findings] == [True, False]
        assert findings[0].manufacturer == "NVIDIA"
        assert findings[0].category == "graphics"
        assert findings[0].recommendations

    def test_without_bug_check(self):
        findings = find_problematic_drivers([module("rtkvhd64.sys")])

        assert len(findings) == 1
        assert not findings[0].matches_bug_check

    def test_nothing_known(self):
        assert find_problematic_drivers([module("ntoskrnl.exe"), module("disk.sys")], 0x0A) == []


class TestReport:
    """Findings flow from extraction into the rendered reports."""

    def extract(self):
        data = build_legacy_kernel_dump(code=0xD1) + b"\x00rtkvhd64.sys\x00"
        return DumpFactExtractor(reader_factory=failing_reader_factory).extract(data)

    def test_extraction_associates_bug_check(self):
        info = self.extract()

        assert [m.name for m in info.module_list] == ["rtkvhd64.sys"]
        assert [f.module_name for f in info.driver_findings] == ["rtkvhd64.sys"]
        assert info.driver_findings[0].matches_bug_check

    def test_json(self):
        report = format_structured_dump_info(self.extract())

        assert report["problem_drivers"][0]["module"] == "rtkvhd64.sys"
        assert report["problem_drivers"][0]["matches_bug_check"] is True
        assert report["driver_categories"] == {"audio": ["rtkvhd64.sys"]}

    def test_text(self):
        text = format_text_output(self.extract())

        assert "【已知问题驱动】" in text
        assert "Realtek HD Audio Driver" in text
        assert "与本次崩溃相关" in text
