"""Tests for drivers module."""

from nmpatches.drivers import DriverLocator
from nmpatches.models import DriverKey, KernelVersion

from conftest import E1000E_DIR, FakeProvisioner, e1000e_tree


V3_8 = KernelVersion.parse("3.8")


class TestDriverLocator:
    """Tests for DriverLocator."""

    def test_locate(self, config):
        """Test locating drivers by their identifying file."""
        locator = DriverLocator(FakeProvisioner(config, {"3.8": e1000e_tree()}))
        assert locator.locate(DriverKey(name="e1000e"), V3_8) == E1000E_DIR
        assert locator.locate(DriverKey(name="veth"), V3_8) == "drivers/net"

    def test_source_dir(self, config):
        """Test the driver directory is found in a provisioned tree."""
        locator = DriverLocator(FakeProvisioner(config, {"3.8": e1000e_tree()}))
        path = locator.source_dir(DriverKey(name="e1000e"), V3_8)
        assert path == config.kernel_dir / "linux-30800" / E1000E_DIR
        assert (path / "netdev.c").is_file()

    def test_missing_driver(self, config):
        """Test a driver absent from the release."""
        locator = DriverLocator(FakeProvisioner(config, {"3.8": e1000e_tree()}))
        assert locator.locate(DriverKey(name="igb"), V3_8) is None
        assert locator.source_dir(DriverKey(name="igb"), V3_8) is None

    def test_unavailable_release(self, config):
        """Test an unavailable release locates nothing."""
        locator = DriverLocator(FakeProvisioner(config, {}))
        assert locator.locate(DriverKey(name="e1000e"), V3_8) is None

    def test_memoised(self, config):
        """Test lookups are answered from memory after the first search."""
        provisioner = FakeProvisioner(config, {"3.8": e1000e_tree()})
        locator = DriverLocator(provisioner)
        assert locator.locate(DriverKey(name="e1000e"), V3_8) == E1000E_DIR
        (provisioner.tree_path(V3_8) / E1000E_DIR / "netdev.c").unlink()
        assert locator.locate(DriverKey(name="e1000e"), V3_8) == E1000E_DIR

    def test_alternate_file_name(self, config):
        """Test a driver whose main file was renamed between releases."""
        tree = {"drivers/net/ethernet/realtek/r8169_main.c": "int r8169;\n"}
        locator = DriverLocator(FakeProvisioner(config, {"5.4": tree}))
        assert locator.locate(DriverKey(name="r8169"), KernelVersion.parse("5.4")) == "drivers/net/ethernet/realtek"
