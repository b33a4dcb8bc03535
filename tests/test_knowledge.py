"""
Tests for the stop code catalogue and crash pattern knowledge base.
"""
import pytest

from bsod_facts.core.bugcheck_kb import (
    BUG_CHECK_CODES,
    BugcheckKnowledgeBase,
    get_bug_check_name,
    get_exception_name,
)
from bsod_facts.core.models import Severity
from bsod_facts.knowledge.crash_patterns import (
    get_analysis_strategy,
    get_crash_pattern,
    get_irql_name,
    get_parameter_explanation,
    load_crash_patterns,
)


class TestCatalogue:

    def test_known_names(self):
        assert get_bug_check_name(0x0A) == "IRQL_NOT_LESS_OR_EQUAL"
        assert get_bug_check_name(0x139) == "KERNEL_SECURITY_CHECK_FAILURE"
        assert get_bug_check_name(0xDEADDEAD) == "MANUALLY_INITIATED_CRASH"

    def test_unknown_name_fallback(self):
        assert get_bug_check_name(0x300) == "UNKNOWN_BUG_CHECK_300"

    def test_catalogue_size(self):
        assert len(BUG_CHECK_CODES) > 300

    def test_exception_names(self):
        assert get_exception_name(0xC0000005) == "ACCESS_VIOLATION"
        assert get_exception_name(0x12345678) == "UNKNOWN_EXCEPTION"


class TestCrashPatterns:

    def test_loaded_once(self):
        assert load_crash_patterns() is load_crash_patterns()

    def test_every_pattern_has_four_parameters(self):
        patterns = load_crash_patterns()

        assert len(patterns) == 46
        for pattern in patterns.values():
            assert len(pattern.parameters) == 4

    def test_pattern_lookup(self):
        pattern = get_crash_pattern(0x0A)

        assert pattern.name == "IRQL_NOT_LESS_OR_EQUAL"
        assert pattern.parameters[1].name == "IRQL"
        assert pattern.common_causes
        assert get_crash_pattern(0x300) is None


class TestParameterExplanation:

    def test_irql_decode(self):
        explanation = get_parameter_explanation(0x0A, 2, 2)

        assert "DISPATCH_LEVEL" in explanation
        assert "Value: 0x2" in explanation

    def test_unlisted_irql(self):
        assert "IRQL 7" in get_parameter_explanation(0xD1, 2, 7)

    def test_access_type_decode(self):
        assert "Access Type: Write" in get_parameter_explanation(0x0A, 3, 1)

    def test_page_fault_access(self):
        assert "Execute (DEP violation)" in get_parameter_explanation(0x50, 2, 10)

    def test_pool_violation(self):
        assert "Pool double freed" in get_parameter_explanation(0xC2, 1, 0x43)

    def test_fast_fail(self):
        assert "FAST_FAIL_CORRUPT_LIST_ENTRY" in get_parameter_explanation(0x139, 1, 3)

    def test_unknown_code(self):
        assert get_parameter_explanation(0x300, 1, 0) == "Unknown parameter for bug check 0x300"

    @pytest.mark.parametrize("index", [0, 5, -1])
    def test_bad_index(self, index):
        with pytest.raises(ValueError):
            get_parameter_explanation(0x0A, index, 0)

    def test_irql_names(self):
        assert get_irql_name(0) == "PASSIVE_LEVEL"
        assert get_irql_name(11) == "HIGH_LEVEL"


class TestAnalysisStrategy:

    @pytest.mark.parametrize("code", [0x124, 0x9C, 0x101, 0x19, 0x1A])
    def test_hardware(self, code):
        strategy = get_analysis_strategy(code)

        assert strategy.priority == Severity.CRITICAL
        assert "Memory testing" in strategy.focus_areas

    @pytest.mark.parametrize("code", [0x139, 0x109, 0x18C, 0x18E])
    def test_security(self, code):
        assert get_analysis_strategy(code).priority == Severity.HIGH

    @pytest.mark.parametrize("code", [0xD1, 0x0A, 0xC4, 0xC9, 0xDA])
    def test_driver(self, code):
        strategy = get_analysis_strategy(code)

        assert strategy.priority == Severity.MEDIUM
        assert "Driver analysis" in strategy.focus_areas

    def test_generic(self):
        strategy = get_analysis_strategy(0x7B)

        assert strategy.priority == Severity.MEDIUM
        assert "General system health" in strategy.focus_areas


class TestKnowledgeBaseFacade:

    def test_known_code(self):
        kb = BugcheckKnowledgeBase()

        assert "IRQL_NOT_LESS_OR_EQUAL" in kb.get_description(0x0A)
        assert kb.get_recommendations(0x0A)
        assert kb.get_common_causes(0x0A)
        assert kb.get_diagnostic_steps(0x0A)

    def test_unknown_code(self):
        kb = BugcheckKnowledgeBase()

        assert kb.get_recommendations(0x300) == []
        assert "0x00000300" in kb.get_description(0x300)
