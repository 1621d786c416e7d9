"""Tests for build module."""

import pytest

from nmpatches.build import BuildError, DriverBuilder
from nmpatches.models import DriverKey, DriverKind, KernelVersion, Patch, PatchRange


V3_8 = KernelVersion.parse("3.8")


def make_patch(name="e1000e", end="3.9", content=b"diff\n"):
    r = PatchRange(driver=DriverKey(name=name), start=V3_8, end=KernelVersion.parse(end))
    return Patch(range=r, content=content, source_commit="abc")


@pytest.fixture
def source_tree(tmp_path):
    """Netmap source tree with a configure script and stock patches."""
    root = tmp_path / "netmap"
    linux = root / "LINUX"
    (linux / "final-patches").mkdir(parents=True)
    (linux / "configure").write_text("#!/bin/sh\n")
    (linux / "final-patches" / "vanilla--e1000e--20620--30800").write_text("old")
    (linux / "final-patches" / "vanilla--e1000e--30800--99999").write_text("old")
    (linux / "final-patches" / "vanilla--igb--30800--99999").write_text("igb")
    (linux / "final-patches" / "vanilla--e1000--30800--99999").write_text("e1000")
    return root


class TestInstallPatch:
    """Tests for patch installation."""

    def test_only_patch_for_driver(self, config, source_tree):
        """Test existing patches for the driver are replaced, others kept."""
        patch = make_patch(content=b"new\n")
        dest = DriverBuilder(config).install_patch(source_tree, patch)
        patches_dir = source_tree / "LINUX" / "final-patches"
        assert sorted(p.name for p in patches_dir.iterdir()) == [
            "vanilla--e1000--30800--99999",
            "vanilla--e1000e--30800--30900",
            "vanilla--igb--30800--99999",
        ]
        assert dest.read_bytes() == b"new\n"

    def test_creates_patches_dir(self, config, tmp_path):
        """Test the patch lands in LINUX/final-patches under its name."""
        dest = DriverBuilder(config).install_patch(tmp_path, make_patch())
        assert dest == tmp_path / "LINUX" / "final-patches" / "vanilla--e1000e--30800--30900"


class TestBuildCommands:
    """Tests for the build command line."""

    def test_commands(self, config, source_tree, tmp_path):
        """Test the configure and make command lines."""
        commands = DriverBuilder(config).build_commands(source_tree, tmp_path / "linux", make_patch())
        assert commands == [
            [
                str(source_tree / "LINUX" / "configure"),
                f"--kernel-dir={tmp_path / 'linux'}",
                "--drivers=e1000e",
            ],
            ["make", "-j4"],
        ]

    def test_driver_slug_with_version(self, config, source_tree, tmp_path):
        """Test a versioned driver is passed to configure with its version."""
        r = PatchRange(
            driver=DriverKey(kind=DriverKind.EXTERNAL, name="ixgbe", version="5.3.7"),
            start=V3_8,
            end=KernelVersion.parse("3.9"),
        )
        patch = Patch(range=r, content=b"", source_commit="abc")
        configure = DriverBuilder(config).build_commands(source_tree, tmp_path, patch)[0]
        assert "--drivers=ixgbe:5.3.7" in configure


class TestBuild:
    """Tests for DriverBuilder.build."""

    def test_missing_configure(self, config, tmp_path):
        """Test a source tree without configure cannot be built."""
        with pytest.raises(BuildError):
            DriverBuilder(config).build(tmp_path, tmp_path, make_patch(), V3_8)

    def test_success(self, config, source_tree, tmp_path, monkeypatch):
        """Test a clean build, with commands run in the configure directory."""
        calls = []

        def fake_run(cmd, cwd=None, timeout=None, **kwargs):
            calls.append((cmd[0], cwd))
            return 0, "CC [M] e1000e/netdev.o\n", ""

        monkeypatch.setattr("nmpatches.build.run_command", fake_run)
        log_file = tmp_path / "logs" / "e1000e.log"
        verdict = DriverBuilder(config).build(source_tree, tmp_path, make_patch(), V3_8, log_file)
        assert verdict.ok
        assert not verdict.warned
        assert [cwd for _, cwd in calls] == [source_tree / "LINUX"] * 2
        assert "netdev.o" in log_file.read_text()

    def test_warnings(self, config, source_tree, tmp_path, monkeypatch):
        """Test compiler warnings are detected in the output."""
        monkeypatch.setattr(
            "nmpatches.build.run_command",
            lambda cmd, **kwargs: (0, "", "netdev.c:42:5: warning: unused variable 'na'\n"),
        )
        verdict = DriverBuilder(config).build(source_tree, tmp_path, make_patch(), V3_8)
        assert verdict.ok
        assert verdict.warned

    def test_failure_stops_at_first_command(self, config, source_tree, tmp_path, monkeypatch):
        """Test make is not run once configure fails."""
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            return 1, "", "configure: error: no kernel sources\n"

        monkeypatch.setattr("nmpatches.build.run_command", fake_run)
        verdict = DriverBuilder(config).build(source_tree, tmp_path, make_patch(), V3_8)
        assert not verdict.ok
        assert len(calls) == 1
        assert "exit code 1" in verdict.log
