"""
ChangeApplier and OverlayStore.

INVARIANTS:
1. Within a batch: deletes, then renames, then writes
2. No path is ever both written and deleted
3. Re-applying a closed write with the same content changes nothing
4. A failed rename never blocks the rest of its batch
"""
import pytest

from patchloop.core.exceptions import SourceNotFound
from patchloop.core.types import (
    AddDependencyDirective,
    DeleteDirective,
    ParsedDirective,
    RenameDirective,
    WriteDirective,
)
from patchloop.orchestration.change_applier import ChangeApplier
from patchloop.persistence.base_tree import MemoryBaseTree
from patchloop.persistence.overlay import OverlayStore


def write(path, content="x"):
    return WriteDirective(path=path, content=content)


def assert_disjoint(overlay: OverlayStore):
    assert not (set(overlay.writes) & overlay.deletes)


class TestBatchOrdering:

    def test_delete_then_write_same_batch_keeps_write(self, overlay):
        applier = ChangeApplier(overlay)
        # Stream order is write first; class order still applies the delete first
        result = applier.apply_batch([write("foo.ts", "new"), DeleteDirective(path="foo.ts")])

        assert overlay.writes == {"foo.ts": "new"}
        assert "foo.ts" not in overlay.deletes
        assert len(result.applied) == 2
        assert_disjoint(overlay)

    def test_delete_in_later_batch_removes_write(self, overlay):
        applier = ChangeApplier(overlay)
        applier.apply_batch([write("foo.ts")])
        applier.apply_batch([DeleteDirective(path="foo.ts")])

        assert "foo.ts" not in overlay.writes
        assert overlay.get_deleted_files() == ["foo.ts"]
        assert not overlay.file_exists("foo.ts")
        assert_disjoint(overlay)

    def test_rename_can_target_path_deleted_in_same_batch(self, overlay):
        applier = ChangeApplier(overlay)
        applier.apply_batch([
            RenameDirective(from_path="lib/old.ts", to_path="app/layout.tsx"),
            DeleteDirective(path="app/layout.tsx"),
        ])
        assert overlay.writes == {"app/layout.tsx": "export const answer = 42;\n"}
        assert overlay.get_deleted_files() == ["lib/old.ts"]
        assert_disjoint(overlay)

    def test_last_write_in_stream_order_wins(self, overlay):
        applier = ChangeApplier(overlay)
        applier.apply_batch([write("a.ts", "first"), write("a.ts", "second")])
        assert overlay.read_file("a.ts") == "second"

    def test_accepts_parsed_directives(self, overlay):
        applier = ChangeApplier(overlay)
        result = applier.apply_batch([ParsedDirective(directive=write("a.ts"), start=0, end=10)])
        assert result.changed
        assert overlay.writes == {"a.ts": "x"}


class TestRename:

    def test_rename_from_base(self, overlay):
        applier = ChangeApplier(overlay)
        applier.apply_batch([RenameDirective(from_path="lib/old.ts", to_path="lib/new.ts")])

        assert overlay.read_file("lib/new.ts") == "export const answer = 42;\n"
        assert overlay.get_deleted_files() == ["lib/old.ts"]
        assert overlay.renames == {"lib/old.ts": "lib/new.ts"}
        assert not overlay.file_exists("lib/old.ts")

    def test_rename_moves_overlay_content(self, overlay):
        applier = ChangeApplier(overlay)
        applier.apply_batch([write("draft.ts", "draft")])
        applier.apply_batch([RenameDirective(from_path="draft.ts", to_path="final.ts")])

        assert overlay.writes == {"final.ts": "draft"}
        assert "draft.ts" in overlay.deletes
        assert_disjoint(overlay)

    def test_missing_source_flagged_rest_of_batch_applies(self, overlay):
        applier = ChangeApplier(overlay)
        result = applier.apply_batch([
            RenameDirective(from_path="nope.ts", to_path="yes.ts"),
            write("keep.ts", "kept"),
        ])

        assert len(result.errors) == 1
        assert isinstance(result.errors[0], SourceNotFound)
        assert result.errors[0].from_path == "nope.ts"
        assert overlay.writes == {"keep.ts": "kept"}
        assert "yes.ts" not in overlay.writes

    def test_rename_of_deleted_path_is_missing_source(self, overlay):
        applier = ChangeApplier(overlay)
        applier.apply_batch([DeleteDirective(path="lib/old.ts")])
        with pytest.raises(SourceNotFound):
            applier.apply(RenameDirective(from_path="lib/old.ts", to_path="lib/new.ts"))

    def test_rename_to_self_is_noop(self, overlay):
        applier = ChangeApplier(overlay)
        result = applier.apply_batch([RenameDirective(from_path="lib/old.ts", to_path="lib/old.ts")])
        assert result.skipped and not result.applied
        assert overlay.is_empty()


class TestIdempotence:

    def test_same_write_twice_is_noop(self, overlay):
        applier = ChangeApplier(overlay)
        first = applier.apply_batch([write("a.ts", "same")])
        second = applier.apply_batch([write("a.ts", "same")])

        assert first.changed
        assert not second.changed
        assert second.skipped == [write("a.ts", "same")]
        assert overlay.writes == {"a.ts": "same"}

    def test_replay_log_twice(self, overlay):
        log = [
            write("a.ts", "a"),
            RenameDirective(from_path="lib/old.ts", to_path="lib/new.ts"),
            AddDependencyDirective(packages=frozenset({"zod"})),
        ]
        applier = ChangeApplier(overlay)
        applier.replay(log)
        snapshot = overlay.snapshot()

        again = applier.replay([write("a.ts", "a"), AddDependencyDirective(packages=frozenset({"zod"}))])
        assert not again.changed
        assert overlay.snapshot() == snapshot

    def test_changed_content_applies(self, overlay):
        applier = ChangeApplier(overlay)
        applier.apply_batch([write("a.ts", "v1")])
        assert applier.apply_batch([write("a.ts", "v2")]).changed


def apply_batches(applier, *batches):
    """Apply batches in turn; return the flattened log of applied directives."""
    log = []
    for batch in batches:
        log.extend(applier.apply_batch(batch).applied)
    return log


class TestReplay:

    def test_write_then_delete_in_later_batch(self, overlay):
        applier = ChangeApplier(overlay)
        log = apply_batches(applier, [write("a.ts", "x")], [DeleteDirective(path="a.ts")])
        before = overlay.snapshot()

        result = applier.replay(log)

        assert not result.changed
        assert not result.errors
        assert overlay.snapshot() == before
        assert overlay.get_deleted_files() == ["a.ts"]

    def test_renames_across_batches(self, overlay):
        applier = ChangeApplier(overlay)
        log = apply_batches(
            applier,
            [write("draft.ts", "d"), RenameDirective(from_path="lib/old.ts", to_path="lib/new.ts")],
            [DeleteDirective(path="app/layout.tsx"), RenameDirective(from_path="draft.ts", to_path="final.ts")],
            [RenameDirective(from_path="lib/new.ts", to_path="lib/newest.ts")],
        )
        before = overlay.snapshot()

        result = applier.replay(log)

        assert not result.errors
        assert not result.changed
        assert overlay.snapshot() == before
        assert overlay.renames == {"lib/old.ts": "lib/newest.ts", "draft.ts": "final.ts"}

    def test_truncated_log_resumes(self, overlay):
        applier = ChangeApplier(overlay)
        log = [
            DeleteDirective(path="app/layout.tsx"),
            RenameDirective(from_path="lib/old.ts", to_path="lib/new.ts"),
            write("a.ts", "a"),
        ]
        applier.replay(log[:2])

        result = applier.replay(log)

        assert result.applied == [write("a.ts", "a")]
        assert result.skipped == log[:2]
        assert applier.history == log

    def test_applied_order_is_kept(self, overlay):
        applier = ChangeApplier(overlay)
        # Stream order in a log is what counts, not class order
        result = applier.replay([write("a.ts", "x"), DeleteDirective(path="a.ts")])
        assert overlay.writes == {}
        assert overlay.get_deleted_files() == ["a.ts"]
        assert len(result.applied) == 2


class TestRenameBookkeeping:

    def test_delete_of_target_drops_entry(self, overlay):
        applier = ChangeApplier(overlay)
        apply_batches(
            applier,
            [RenameDirective(from_path="lib/old.ts", to_path="lib/new.ts")],
            [DeleteDirective(path="lib/new.ts")],
        )
        assert overlay.renames == {}
        assert overlay.writes == {}
        assert overlay.get_deleted_files() == ["lib/new.ts", "lib/old.ts"]

    def test_rewriting_source_drops_entry(self, overlay):
        applier = ChangeApplier(overlay)
        apply_batches(
            applier,
            [RenameDirective(from_path="lib/old.ts", to_path="lib/new.ts")],
            [write("lib/old.ts", "fresh")],
        )
        assert overlay.renames == {}
        assert overlay.read_file("lib/new.ts") == "export const answer = 42;\n"
        assert overlay.read_file("lib/old.ts") == "fresh"
        assert_disjoint(overlay)

    def test_chain_collapses(self, overlay):
        applier = ChangeApplier(overlay)
        apply_batches(
            applier,
            [RenameDirective(from_path="lib/old.ts", to_path="lib/b.ts")],
            [RenameDirective(from_path="lib/b.ts", to_path="lib/c.ts")],
        )
        assert overlay.renames == {"lib/old.ts": "lib/c.ts"}
        assert overlay.writes == {"lib/c.ts": "export const answer = 42;\n"}

    def test_rename_back_clears_entry(self, overlay):
        applier = ChangeApplier(overlay)
        apply_batches(
            applier,
            [RenameDirective(from_path="lib/old.ts", to_path="lib/tmp.ts")],
            [RenameDirective(from_path="lib/tmp.ts", to_path="lib/old.ts")],
        )
        assert overlay.renames == {}
        assert overlay.read_file("lib/old.ts") == "export const answer = 42;\n"

    def test_repeated_delete_is_noop(self, overlay):
        applier = ChangeApplier(overlay)
        applier.apply_batch([DeleteDirective(path="lib/old.ts")])
        again = applier.apply_batch([DeleteDirective(path="lib/old.ts")])
        assert not again.changed


class TestDependencies:

    def test_union_across_directives(self, overlay):
        applier = ChangeApplier(overlay)
        applier.apply_batch([AddDependencyDirective(packages=frozenset({"zod", "clsx"}))])
        applier.apply_batch([AddDependencyDirective(packages=frozenset({"zod", "date-fns"}))])
        assert applier.dependencies == {"zod", "clsx", "date-fns"}
        assert overlay.is_empty()


class TestOverlayReads:

    def test_overlay_shadows_base(self):
        overlay = OverlayStore(MemoryBaseTree({"a.ts": "base", "b.ts": "base-b"}))
        applier = ChangeApplier(overlay)
        applier.apply_batch([write("a.ts", "overlay"), DeleteDirective(path="b.ts")])

        assert overlay.read_file("a.ts") == "overlay"
        assert overlay.read_file("b.ts") is None
        assert not overlay.file_exists("b.ts")
        assert overlay.file_exists("a.ts")

    def test_virtual_files_is_a_copy(self, overlay):
        ChangeApplier(overlay).apply_batch([write("a.ts")])
        files = overlay.get_virtual_files()
        files["b.ts"] = "y"
        assert "b.ts" not in overlay.writes

    def test_clear(self, overlay):
        ChangeApplier(overlay).apply_batch([write("a.ts"), DeleteDirective(path="lib/old.ts")])
        overlay.clear()
        assert overlay.is_empty()
        assert overlay.read_file("lib/old.ts") == "export const answer = 42;\n"
