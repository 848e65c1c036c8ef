"""Tests for the vault editor: save policies and sync triggers per edit."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from vaultsync.editor import VaultEditor

ACCOUNT = "alice@example.com"


@pytest.fixture
def reconciler() -> MagicMock:
    return MagicMock()


@pytest.fixture
def editor(session, reconciler) -> VaultEditor:
    return VaultEditor(session, reconciler)


class TestRecords:
    """Add, update, delete."""

    def test_add_is_a_draft_saved_now(self, editor, store, reconciler) -> None:
        record = editor.add_record()
        assert record.draft
        assert record.stable_id
        assert not store.has_pending(ACCOUNT)
        assert store.read_meta(ACCOUNT).version == 0
        reconciler.on_data_changed.assert_not_called()

    def test_update_clears_draft_and_debounces(self, editor, store, reconciler) -> None:
        editor.add_record()
        record = editor.update_record(0, service="mail", secret="pw")
        assert not record.draft
        assert store.has_pending(ACCOUNT)
        reconciler.on_data_changed.assert_called_once_with(immediate=False)

    def test_update_unknown_field(self, editor) -> None:
        editor.add_record()
        with pytest.raises(ValueError, match="stable_id"):
            editor.update_record(0, stable_id="hijack")

    def test_update_bad_index(self, editor) -> None:
        with pytest.raises(IndexError):
            editor.update_record(3, service="x")

    def test_blank_update_does_not_sync(self, editor, reconciler) -> None:
        editor.add_record()
        editor.update_record(0, note="just a note")
        reconciler.on_data_changed.assert_not_called()

    def test_delete_saved_record_syncs_now(self, editor, store, reconciler) -> None:
        editor.create_record(service="mail", login="a", secret="pw")
        reconciler.reset_mock()
        editor.delete_record(0)
        assert editor.vault.records == []
        assert store.read_meta(ACCOUNT).version == 1
        reconciler.on_data_changed.assert_called_once_with(immediate=True)

    def test_delete_draft_never_syncs(self, editor, store, reconciler) -> None:
        editor.add_record()
        editor.delete_record(0)
        assert store.read_meta(ACCOUNT).version == 0
        reconciler.on_data_changed.assert_not_called()

    def test_delete_reindexes_visibility(self, editor) -> None:
        for name in ("a", "b", "c"):
            editor.create_record(service=name)
        editor.toggle_visibility(0)
        editor.toggle_visibility(2)
        editor.delete_record(1)
        assert editor.vault.visibility == {"0": True, "1": True}


class TestSearch:
    """Text search over every field plus a category filter."""

    @pytest.fixture
    def filled(self, editor):
        editor.create_record(service="Mail", login="alice", category="Email")
        editor.create_record(service="bank", secret="HunterMail", category="Banks")
        editor.create_record(service="forum", note="old mail account", category="Social Networks")
        editor.create_record(service="steam", login="gamer", category="Games")
        return editor

    def test_empty_search_matches_all(self, filled) -> None:
        assert filled.search() == [0, 1, 2, 3]

    def test_text_matches_any_field_case_insensitively(self, filled) -> None:
        assert filled.search("MAIL") == [0, 1, 2]
        assert filled.search("gamer") == [3]
        assert filled.search("nothing here") == []

    def test_text_matches_category(self, filled) -> None:
        assert filled.search("social") == [2]

    def test_label_filter(self, filled) -> None:
        assert filled.search(labels=["banks", "GAMES"]) == [1, 3]

    def test_label_filter_and_text(self, filled) -> None:
        assert filled.search("mail", labels=["Email", "Banks"]) == [0, 1]


class TestLabels:
    """Label edits save and sync immediately."""

    def test_add_label(self, editor, store, reconciler) -> None:
        assert editor.add_label("  Travel ") == "Travel"
        assert "Travel" in editor.vault.labels
        assert store.read_meta(ACCOUNT).version == 1
        reconciler.on_data_changed.assert_called_once_with(immediate=True)

    def test_duplicate_label(self, editor) -> None:
        with pytest.raises(ValueError, match="already exists"):
            editor.add_label("work")

    def test_empty_label(self, editor) -> None:
        with pytest.raises(ValueError):
            editor.add_label("   ")

    def test_delete_label(self, editor, reconciler) -> None:
        assert editor.delete_label("games") == "Games"
        assert "Games" not in editor.vault.labels
        reconciler.on_data_changed.assert_called_once_with(immediate=True)

    def test_delete_missing_label(self, editor) -> None:
        with pytest.raises(ValueError, match="not found"):
            editor.delete_label("Nope")


class TestPreferences:
    """Flags and visibility are debounced."""

    def test_flag_without_records_does_not_sync(self, editor, store, reconciler) -> None:
        editor.set_flag("delete_without_confirm", True)
        assert editor.vault.ui_flags == {"delete_without_confirm": True}
        assert store.has_pending(ACCOUNT)
        reconciler.on_data_changed.assert_not_called()

    def test_toggle_visibility(self, editor, reconciler) -> None:
        editor.create_record(service="mail")
        reconciler.reset_mock()
        assert editor.toggle_visibility(0) is True
        assert editor.toggle_visibility(0) is False
        assert reconciler.on_data_changed.call_count == 2

    def test_flush_writes_and_flushes_reconciler(self, editor, store, reconciler) -> None:
        editor.set_flag("x", False)
        editor.flush()
        assert not store.has_pending(ACCOUNT)
        reconciler.flush.assert_called_once_with()


class TestDraftExclusion:
    """Drafts never reach the remote."""

    def _count_syncs(self, device, monkeypatch) -> list:
        calls: list = []
        original = device.reconciler.sync

        def counting(force: bool = False):
            calls.append(force)
            return original(force)

        monkeypatch.setattr(device.reconciler, "sync", counting)
        return calls

    def test_add_then_delete_draft(self, make_device, monkeypatch) -> None:
        device = make_device("laptop")
        calls = self._count_syncs(device, monkeypatch)
        device.editor.add_record()
        device.editor.delete_record(0)
        device.editor.flush()
        assert calls == []
        assert device.store.read_meta(device.session.account_id).version == 0

    def test_add_edit_delete_syncs_once(self, make_device, monkeypatch) -> None:
        device = make_device("laptop")
        calls = self._count_syncs(device, monkeypatch)
        device.editor.add_record()
        device.editor.update_record(0, service="mail", secret="pw")
        device.editor.delete_record(0)
        device.editor.flush()
        assert len(calls) == 1
        assert not device.reconciler.sync_pending
