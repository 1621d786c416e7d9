"""Tests for storage module."""

import pytest

from nmpatches.models import DriverKey, KernelVersion, Patch, PatchRange
from nmpatches.storage import DirectoryCollection, MemoryCollection, PatchSet, PatchStore


def make_patch(driver, start, end, content=b"diff\n"):
    r = PatchRange(driver=DriverKey(name=driver), start=KernelVersion.parse(start), end=KernelVersion.parse(end))
    return Patch(range=r, content=content, source_commit="abc")


class TestDirectoryCollection:
    """Tests for the directory-backed collection."""

    def test_write_read(self, tmp_path):
        """Test binary content survives a round trip."""
        collection = DirectoryCollection(tmp_path / "pending")
        collection.write("k", b"\x00\xffdata")
        assert collection.read("k") == b"\x00\xffdata"
        assert collection.keys() == ["k"]
        assert "k" in collection
        assert collection.name == "pending"

    def test_missing(self, tmp_path):
        """Test reading a missing directory or key."""
        collection = DirectoryCollection(tmp_path / "nothing")
        assert collection.keys() == []
        assert collection.read("k") is None

    def test_hidden_files_ignored(self, tmp_path):
        """Test leftovers of interrupted writes are not listed."""
        (tmp_path / ".k.tmp").write_text("partial")
        (tmp_path / "k").write_text("full")
        assert DirectoryCollection(tmp_path).keys() == ["k"]

    def test_delete_and_clear(self, tmp_path):
        """Test removing one entry and then all of them."""
        collection = DirectoryCollection(tmp_path)
        collection.write("a", b"1")
        collection.write("b", b"2")
        collection.delete("a")
        collection.delete("missing")
        assert collection.keys() == ["b"]
        collection.clear()
        assert len(collection) == 0

    def test_invalid_key(self, tmp_path):
        """Test keys cannot escape the directory."""
        with pytest.raises(ValueError):
            DirectoryCollection(tmp_path).write("../evil", b"")


class TestPatchSet:
    """Tests for the typed patch view."""

    def test_ranges_sorted(self):
        """Test ranges come back sorted by driver and start."""
        patches = PatchSet(MemoryCollection("final"))
        patches.add(make_patch("veth", "3.8", "3.9"))
        patches.add(make_patch("e1000e", "3.0", "3.1"))
        patches.add(make_patch("e1000e", "2.6.32", "3.0"))
        assert patches.names() == [
            "vanilla--e1000e--20620--30000",
            "vanilla--e1000e--30000--30100",
            "vanilla--veth--30800--30900",
        ]

    def test_filter_by_driver(self):
        """Test listing is restricted to one driver."""
        patches = PatchSet(MemoryCollection())
        patches.add(make_patch("veth", "3.8", "3.9"))
        patches.add(make_patch("e1000e", "3.0", "3.1"))
        assert patches.names(DriverKey(name="veth")) == ["vanilla--veth--30800--30900"]

    def test_unrecognised_entries_skipped(self):
        """Test junk keys are ignored instead of failing the listing."""
        collection = MemoryCollection("pending")
        collection.write("README", b"")
        patches = PatchSet(collection)
        patches.add(make_patch("veth", "3.8", "3.9"))
        assert len(patches) == 1

    def test_patches_stamped_with_commit(self):
        """Test loaded patches carry the given source commit."""
        patches = PatchSet(MemoryCollection())
        patches.add(make_patch("veth", "3.8", "3.9", b"content"))
        [loaded] = patches.patches("deadbeef")
        assert loaded.source_commit == "deadbeef"
        assert loaded.content == b"content"

    def test_find(self):
        """Test finding the patch covering a version."""
        patches = PatchSet(MemoryCollection())
        patches.add(make_patch("veth", "3.8", "3.10"))
        veth = DriverKey(name="veth")
        assert patches.find_ending_at(veth, KernelVersion.parse("3.10")).name == "vanilla--veth--30800--30a00"
        assert patches.find_starting_at(veth, KernelVersion.parse("3.8")) is not None
        assert patches.find_ending_at(veth, KernelVersion.parse("3.9")) is None

    def test_rename(self):
        """Test renaming keeps content under the new identifier."""
        patches = PatchSet(MemoryCollection())
        patch = make_patch("veth", "3.8", "3.9", b"content")
        patches.add(patch)
        patches.rename(patch.name, "vanilla--veth--30800--99999")
        assert patches.names() == ["vanilla--veth--30800--99999"]
        assert patches.get("vanilla--veth--30800--99999", "abc").content == b"content"

    def test_rename_missing(self):
        """Test renaming an absent patch raises KeyError."""
        with pytest.raises(KeyError):
            PatchSet(MemoryCollection()).rename("vanilla--veth--30800--30900", "x")

    def test_clear_driver(self):
        """Test clearing removes only that driver."""
        patches = PatchSet(MemoryCollection())
        patches.add(make_patch("veth", "3.8", "3.9"))
        patches.add(make_patch("e1000e", "3.0", "3.1"))
        patches.clear(DriverKey(name="veth"))
        assert patches.names() == ["vanilla--e1000e--30000--30100"]


class TestPatchStore:
    """Tests for PatchStore."""

    def test_reject(self):
        """Test rejection moves a patch between collections."""
        store = PatchStore.in_memory()
        patch = make_patch("veth", "3.8", "3.9")
        store.pending.add(patch)
        store.reject(patch, store.pending)
        assert patch.name not in store.pending
        assert patch.name in store.rejected

    def test_from_config(self, config):
        """Test collections are directories under the work directory."""
        store = PatchStore.from_config(config)
        store.final.add(make_patch("veth", "3.8", "3.9"))
        assert (config.final_dir / "vanilla--veth--30800--30900").is_file()

    def test_unknown_collection(self):
        """Test unknown collection names are rejected."""
        with pytest.raises(KeyError):
            PatchStore.in_memory().collection("cache")
