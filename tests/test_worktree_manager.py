"""Tests for the worktree manager against the in-memory version-control fake."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import pytest

from conftest import FakeVersionControl

from agent_kanban.errors import AlreadyExistsError, NotFoundError, WorktreeStateError
from agent_kanban.utils import SequentialIds
from agent_kanban.worktree import WorktreeManager, WorktreeStatus


class TestCreateWorktree:
    def test_default_branch_and_path(self, worktrees: WorktreeManager, tmp_path: Path) -> None:
        wt = asyncio.run(worktrees.create_worktree("task-0001abcdef"))
        assert wt.branch.startswith("task/task-000-")
        assert wt.path == str(tmp_path / ".worktrees" / wt.branch)
        assert wt.status == WorktreeStatus.ACTIVE
        assert wt.base_branch == "main"
        assert worktrees.get_worktree("task-0001abcdef") is wt

    def test_second_create_for_same_task_fails(self, worktrees: WorktreeManager) -> None:
        asyncio.run(worktrees.create_worktree("T2"))
        with pytest.raises(AlreadyExistsError):
            asyncio.run(worktrees.create_worktree("T2"))
        assert len(worktrees.get_active_worktrees()) == 1

    def test_concurrent_creates_only_one_wins(self, worktrees: WorktreeManager, vcs: FakeVersionControl) -> None:
        async def scenario() -> list:
            return await asyncio.gather(
                worktrees.create_worktree("T3", "feature/t3"),
                worktrees.create_worktree("T3", "feature/t3-other"),
                return_exceptions=True,
            )

        outcomes = asyncio.run(scenario())
        errors = [o for o in outcomes if isinstance(o, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyExistsError)
        assert [w.task_id for w in worktrees.get_active_worktrees()] == ["T3"]
        assert [c[0] for c in vcs.calls] == ["create_branch"]

    def test_branch_in_use_by_other_task(self, worktrees: WorktreeManager) -> None:
        asyncio.run(worktrees.create_worktree("A", "shared"))
        with pytest.raises(AlreadyExistsError):
            asyncio.run(worktrees.create_worktree("B", "shared"))
        assert worktrees.get_worktree("B") is None

    def test_existing_branch_in_backend(self, worktrees: WorktreeManager, vcs: FakeVersionControl) -> None:
        vcs.branches["taken"] = {"path": "/elsewhere", "base_at": 0, "commits": []}
        with pytest.raises(AlreadyExistsError):
            asyncio.run(worktrees.create_worktree("C", "taken"))
        assert worktrees.get_worktree("C") is None

    def test_derived_branches_never_collide(self, vcs: FakeVersionControl, tmp_path: Path) -> None:
        frozen = datetime(2024, 1, 1, tzinfo=timezone.utc)
        manager = WorktreeManager(vcs, tmp_path, ids=SequentialIds(), clock=lambda: frozen)

        first = asyncio.run(manager.create_worktree("task-0001"))
        second = asyncio.run(manager.create_worktree("task-0002"))

        assert second.branch == f"{first.branch}-2"
        assert second.path != first.path
        assert sorted(vcs.branches) == sorted([first.branch, second.branch])

    def test_recreate_after_delete(self, worktrees: WorktreeManager) -> None:
        asyncio.run(worktrees.create_worktree("D", "d1"))
        asyncio.run(worktrees.delete_worktree("D"))
        wt = asyncio.run(worktrees.create_worktree("D", "d2"))
        assert wt.branch == "d2"
        assert [w.branch for w in worktrees.list_history()] == ["d1"]


class TestCommitAndDiff:
    def test_commit_records_last_commit_and_counters(self, worktrees: WorktreeManager) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        commit = asyncio.run(worktrees.commit("T", "add auth", ["auth.py"]))
        wt = worktrees.get_worktree("T")
        assert wt.last_commit == commit
        assert commit.author == "AI Agent"
        assert commit.files_changed == ["auth.py"]
        assert (wt.ahead_by, wt.behind_by) == (1, 0)

    def test_commit_unknown_task(self, worktrees: WorktreeManager) -> None:
        with pytest.raises(NotFoundError):
            asyncio.run(worktrees.commit("missing", "msg"))

    def test_commit_on_conflicted_worktree_rejected(
        self, worktrees: WorktreeManager, vcs: FakeVersionControl
    ) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        asyncio.run(worktrees.commit("T", "edit", ["a.py"]))
        vcs.commit_on_base(["a.py"])
        asyncio.run(worktrees.merge("T"))
        with pytest.raises(WorktreeStateError):
            asyncio.run(worktrees.commit("T", "more", ["b.py"]))

    def test_get_diff(self, worktrees: WorktreeManager) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        asyncio.run(worktrees.commit("T", "edit", ["b.py", "a.py"]))
        diff = asyncio.run(worktrees.get_diff("T"))
        assert [f.path for f in diff.files] == ["a.py", "b.py"]
        assert diff.additions == 2
        assert diff.changed_files == 2

    def test_get_diff_unknown(self, worktrees: WorktreeManager) -> None:
        with pytest.raises(NotFoundError):
            asyncio.run(worktrees.get_diff("missing"))


class TestMerge:
    def test_clean_squash_merge(self, worktrees: WorktreeManager, vcs: FakeVersionControl) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        asyncio.run(worktrees.commit("T", "one", ["a.py"]))
        asyncio.run(worktrees.commit("T", "two", ["b.py"]))

        result = asyncio.run(worktrees.merge("T"))

        assert result.success
        assert result.commit_sha
        wt = worktrees.get_worktree("T")
        assert wt.status == WorktreeStatus.MERGED
        assert wt.merge_commit == result.commit_sha
        assert ("merge", "t", "squash") in vcs.calls
        assert worktrees.get_active_worktrees() == []

    def test_full_history_merge(self, worktrees: WorktreeManager, vcs: FakeVersionControl) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        asyncio.run(worktrees.commit("T", "one", ["a.py"]))
        asyncio.run(worktrees.merge("T", squash=False))
        assert ("merge", "t", "no-ff") in vcs.calls

    def test_conflicts_block_merge(self, worktrees: WorktreeManager, vcs: FakeVersionControl) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        asyncio.run(worktrees.commit("T", "edit", ["shared.py", "mine.py"]))
        vcs.commit_on_base(["shared.py"])

        assert asyncio.run(worktrees.check_conflicts("T")) == ["shared.py"]
        result = asyncio.run(worktrees.merge("T"))

        assert not result.success
        assert result.conflicts == ["shared.py"]
        assert worktrees.get_worktree("T").status == WorktreeStatus.CONFLICTED
        assert not any(c[0] == "merge" for c in vcs.calls)
        assert worktrees.get_status().conflicted == 1

    def test_merge_twice_rejected(self, worktrees: WorktreeManager) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        asyncio.run(worktrees.merge("T"))
        with pytest.raises(WorktreeStateError):
            asyncio.run(worktrees.merge("T"))

    def test_check_conflicts_unknown_task(self, worktrees: WorktreeManager) -> None:
        assert asyncio.run(worktrees.check_conflicts("missing")) == []


class TestRebase:
    def test_rebase_catches_up_with_base(self, worktrees: WorktreeManager, vcs: FakeVersionControl) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        asyncio.run(worktrees.commit("T", "edit", ["mine.py"]))
        vcs.commit_on_base(["theirs.py"])
        vcs.commit_on_base(["other.py"])
        asyncio.run(worktrees.commit("T", "edit2", ["mine2.py"]))
        assert worktrees.get_worktree("T").behind_by == 2

        result = asyncio.run(worktrees.rebase("T"))

        assert result.success
        assert worktrees.get_worktree("T").behind_by == 0
        assert worktrees.get_worktree("T").ahead_by == 2

    def test_rebase_conflict_keeps_status(self, worktrees: WorktreeManager, vcs: FakeVersionControl) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        asyncio.run(worktrees.commit("T", "edit", ["shared.py"]))
        vcs.commit_on_base(["shared.py"])

        result = asyncio.run(worktrees.rebase("T"))

        assert not result.success
        assert result.conflicts == ["shared.py"]
        assert worktrees.get_worktree("T").status == WorktreeStatus.ACTIVE

    def test_clean_rebase_reactivates_conflicted(
        self, worktrees: WorktreeManager, vcs: FakeVersionControl
    ) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        asyncio.run(worktrees.commit("T", "edit", ["shared.py"]))
        vcs.commit_on_base(["shared.py"])
        asyncio.run(worktrees.merge("T"))
        assert worktrees.get_worktree("T").status == WorktreeStatus.CONFLICTED

        # Someone resolves the overlap upstream by reverting their change.
        vcs.base_commits[-1] = []
        result = asyncio.run(worktrees.rebase("T"))

        assert result.success
        assert worktrees.get_worktree("T").status == WorktreeStatus.ACTIVE
        assert asyncio.run(worktrees.merge("T")).success

    def test_rebase_unknown(self, worktrees: WorktreeManager) -> None:
        with pytest.raises(NotFoundError):
            asyncio.run(worktrees.rebase("missing"))


class TestDeleteAndStatus:
    def test_delete_moves_to_history(self, worktrees: WorktreeManager, vcs: FakeVersionControl) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        asyncio.run(worktrees.delete_worktree("T"))
        assert worktrees.get_worktree("T") is None
        assert worktrees.list_history()[0].status == WorktreeStatus.DELETED
        assert ("delete_branch", "t") in vcs.calls

    def test_delete_after_merge_keeps_merged(self, worktrees: WorktreeManager) -> None:
        asyncio.run(worktrees.create_worktree("T", "t"))
        asyncio.run(worktrees.merge("T"))
        asyncio.run(worktrees.delete_worktree("T"))
        assert worktrees.list_history()[0].status == WorktreeStatus.MERGED

    def test_delete_unknown_is_noop(self, worktrees: WorktreeManager, vcs: FakeVersionControl) -> None:
        asyncio.run(worktrees.delete_worktree("missing"))
        assert vcs.calls == []

    def test_status_summary(self, worktrees: WorktreeManager, vcs: FakeVersionControl) -> None:
        asyncio.run(worktrees.create_worktree("A", "a"))
        asyncio.run(worktrees.create_worktree("B", "b"))
        asyncio.run(worktrees.commit("A", "x", ["x.py"]))
        vcs.commit_on_base(["base.py"])
        asyncio.run(worktrees.commit("B", "y", ["y.py"]))

        summary = worktrees.get_status()
        assert summary.active == 2
        assert summary.ahead == 2
        assert summary.behind == 1
        assert summary.conflicted == 0

    def test_snapshot_restore(self, worktrees: WorktreeManager, vcs: FakeVersionControl, tmp_path: Path) -> None:
        asyncio.run(worktrees.create_worktree("A", "a"))
        asyncio.run(worktrees.commit("A", "x", ["x.py"]))
        asyncio.run(worktrees.create_worktree("B", "b"))
        asyncio.run(worktrees.delete_worktree("B"))

        snapshot = worktrees.to_snapshot()
        assert snapshot["worktrees"][0][0] == "A"
        assert snapshot["summary"]["active"] == 1

        restored = WorktreeManager(vcs, tmp_path)
        restored.restore(snapshot)
        assert restored.get_worktree("A").to_dict() == worktrees.get_worktree("A").to_dict()
        assert [w.branch for w in restored.list_history()] == ["b"]


class TestEvents:
    def test_registry_changes_are_published(self, worktrees: WorktreeManager, vcs: FakeVersionControl) -> None:
        seen: list[tuple[str, str]] = []
        unsubscribe = worktrees.subscribe(lambda event, payload: seen.append((event, payload["status"])))

        asyncio.run(worktrees.create_worktree("A", "a"))
        asyncio.run(worktrees.commit("A", "x", ["x.py"]))
        vcs.commit_on_base(["x.py"])
        asyncio.run(worktrees.merge("A"))
        vcs.base_commits.pop()
        asyncio.run(worktrees.rebase("A"))
        asyncio.run(worktrees.merge("A"))
        asyncio.run(worktrees.delete_worktree("A"))

        assert seen == [
            ("worktree.created", "active"),
            ("worktree.committed", "active"),
            ("worktree.conflicted", "conflicted"),
            ("worktree.rebased", "active"),
            ("worktree.merged", "merged"),
            ("worktree.deleted", "merged"),
        ]

        unsubscribe()
        asyncio.run(worktrees.create_worktree("B", "b"))
        assert len(seen) == 6

    def test_failing_listener_is_isolated(self, worktrees: WorktreeManager) -> None:
        def boom(event: str, payload: dict) -> None:
            raise RuntimeError("listener broke")

        worktrees.subscribe(boom)
        wt = asyncio.run(worktrees.create_worktree("A", "a"))
        assert worktrees.get_worktree("A") is wt
