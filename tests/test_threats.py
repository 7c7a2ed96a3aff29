"""Tests for threat scanner."""

from codeunveil.core.threats import THREAT_CATALOG, scan_threats


class TestScanThreats:
    """Tests for scan_threats function."""

    def test_dynamic_evaluation_is_reported(self):
        """loadstring and eval calls are threats."""
        assert "Dynamic string loading detected" in scan_threats("loadstring(code)()")
        assert "Dynamic code execution detected" in scan_threats("eval(payload);")

    def test_clean_code_has_no_threats(self, python_sample):
        """Ordinary code produces an empty list."""
        assert scan_threats(python_sample) == []
        assert scan_threats("") == []

    def test_method_calls_are_not_threats(self):
        """Member calls named like dangerous builtins are ignored."""
        assert scan_threats("re.exec(x); lib.load(y)") == []

    def test_catalog_order_and_uniqueness(self):
        """One message per matching entry, in catalog order."""
        code = "os.execute('ls') eval(x) eval(y)"
        expected = [message for _pattern, message in THREAT_CATALOG if message in (
            "Dynamic code execution detected",
            "System command execution detected",
        )]
        assert scan_threats(code) == expected
