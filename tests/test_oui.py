"""Tests for assetsweep.oui (vendor prefix lookup)."""
from __future__ import annotations

from assetsweep.oui import load_oui_map, lookup_vendor


class TestLoadOuiMap:
    def test_none_returns_empty(self):
        assert load_oui_map(None) == {}

    def test_missing_file_returns_empty(self, tmp_path):
        """An unreadable path logs a warning and yields no prefixes."""
        assert load_oui_map(str(tmp_path / "absent.csv")) == {}

    def test_mixed_prefix_formats(self, tmp_path):
        """Prefixes may use colons, dashes or dots; vendors may be quoted."""
        oui_file = tmp_path / "oui.csv"
        oui_file.write_text(
            "# prefix,vendor\n"
            "00:1A:2B,Apple Inc.\n"
            "00-50-56,\"VMware, Inc.\"\n"
            "3c5a.b4,Google\n"
            "AABB,TooShort\n"
            "DDEEFF,\n"
        )
        oui_map = load_oui_map(str(oui_file))
        assert oui_map == {"001A2B": "Apple Inc.", "005056": "VMware, Inc.", "3C5AB4": "Google"}


class TestLookupVendor:
    def test_lookup_normalizes_mac(self):
        oui_map = {"AABBCC": "TestVendor"}
        assert lookup_vendor("aa:bb:cc:dd:ee:ff", oui_map) == "TestVendor"
        assert lookup_vendor("AA-BB-CC-DD-EE-FF", oui_map) == "TestVendor"
        assert lookup_vendor("aabb.ccdd.eeff", oui_map) == "TestVendor"

    def test_lookup_misses(self):
        assert lookup_vendor("ff:ff:ff:ff:ff:ff", {"AABBCC": "TestVendor"}) is None
        assert lookup_vendor(None, {"AABBCC": "TestVendor"}) is None
        assert lookup_vendor("aa:bb:cc:dd:ee:ff", {}) is None
