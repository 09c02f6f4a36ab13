"""Tests for index resolution."""

from __future__ import annotations

import pytest

from arraylab.errors import IndexOutOfRangeError
from arraylab.manifest import Manifest, clear_cache
from arraylab.resolver import resolve, resolve_from_source
from arraylab.types import WorkUnit


@pytest.fixture
def manifest() -> Manifest:
    fields = ("sample",)
    return Manifest(
        [WorkUnit(fields, (name,)) for name in ("s1", "s2", "s3", "s4")],
        source="samples.tsv",
    )


class TestResolve:
    @pytest.mark.parametrize("index_base", [0, 1])
    def test_every_valid_index(self, manifest, index_base):
        for position, unit in enumerate(manifest):
            assert resolve(manifest, position + index_base, index_base) is unit

    @pytest.mark.parametrize(
        "index,index_base",
        [(-1, 0), (4, 0), (0, 1), (5, 1), (100, 1)],
    )
    def test_out_of_range(self, manifest, index, index_base):
        with pytest.raises(IndexOutOfRangeError) as exc_info:
            resolve(manifest, index, index_base)

        err = exc_info.value
        assert err.index == index
        assert err.path == "samples.tsv"
        assert isinstance(err, IndexError)

    def test_one_based_first_and_last(self, manifest):
        assert resolve(manifest, 1, 1)["sample"] == "s1"
        assert resolve(manifest, 4, 1)["sample"] == "s4"

    @pytest.mark.parametrize("index_base", [2, -1, True])
    def test_invalid_index_base(self, manifest, index_base):
        with pytest.raises(ValueError, match="index_base"):
            resolve(manifest, 1, index_base)

    def test_manifest_at(self, manifest):
        assert manifest.at(0, index_base=0) == manifest.at(1, index_base=1)


class TestResolveFromSource:
    def test_reads_file_once(self, tmp_path, monkeypatch):
        from arraylab import manifest as manifest_module

        clear_cache()
        path = tmp_path / "m.tsv"
        path.write_text("a\nb\nc\n")

        calls = []
        original = manifest_module._parse_manifest

        def counting(*args, **kwargs):
            calls.append(args)
            return original(*args, **kwargs)

        monkeypatch.setattr(manifest_module, "_parse_manifest", counting)

        values = [resolve_from_source(path, i, 1, 1).values for i in (1, 2, 3, 2)]

        assert values == [("a",), ("b",), ("c",), ("b",)]
        assert len(calls) == 1
        clear_cache()
