import json

import pytest

from mdpaste_backend import aliases
from mdpaste_backend.errors import (
    IdentifierConflictError,
    InvalidIdentifierError,
    NotAssociatedError,
    StorageIOError,
)
from mdpaste_backend.models import PromotionMarker


def _pointer(notes_root, alias_id):
    return json.loads((notes_root / alias_id / "_alias.json").read_text(encoding="utf-8"))


def test_add_alias_creates_pointer_and_registers_it(store, paste, notes_root):
    alias_id = paste.add_alias("short")
    assert alias_id == "short"
    assert store.is_alias("short")
    assert not store.exists("short")
    assert store.id_in_use("short")
    assert _pointer(notes_root, "short") == {"parent": paste.id}
    assert store.load(paste.id).aliases == ["short"]


def test_add_generated_alias(store, paste):
    alias_id = paste.add_alias()
    assert 20 <= len(alias_id) <= 30
    assert store.resolve_alias(alias_id) == paste.id


def test_add_alias_rejects_taken_and_invalid_ids(store, paste):
    other = store.create({}, paste_id="other")
    with pytest.raises(IdentifierConflictError):
        paste.add_alias(other.id)
    paste.add_alias("taken")
    with pytest.raises(IdentifierConflictError):
        other.add_alias("taken")
    with pytest.raises(InvalidIdentifierError):
        paste.add_alias("bad id")


def test_resolve_follows_exactly_one_hop(store, paste):
    paste.add_alias("hop")
    assert store.get_real_id("hop") == paste.id
    assert store.get_real_id(paste.id) == paste.id
    assert store.get_real_id("unknown") == "unknown"
    assert store.load_resolved("hop").id == paste.id


def test_remove_alias(store, paste):
    paste.add_alias("gone-soon")
    paste.remove_alias("gone-soon")
    assert not store.id_in_use("gone-soon")
    assert store.load(paste.id).aliases == []


def test_remove_foreign_alias_is_not_associated(store, paste):
    other = store.create({}, paste_id="other")
    other.add_alias("theirs")
    with pytest.raises(NotAssociatedError):
        paste.remove_alias("theirs")
    assert store.is_alias("theirs")


def test_alias_pointer_never_overwrites_a_paste(store, paste):
    with pytest.raises(StorageIOError):
        aliases.write_alias_pointer(store.root, paste.id, "elsewhere")
    assert store.exists(paste.id)


def test_make_primary_swaps_identity(store, paste, notes_root):
    old_id = paste.id
    paste.add_alias("new-primary")
    paste.add_alias("bystander")

    paste.make_primary("new-primary")

    assert paste.id == "new-primary"
    assert store.exists("new-primary")
    assert not store.is_alias("new-primary")
    assert store.resolve_alias("new-primary") is None
    assert store.is_alias(old_id)
    assert store.get_real_id(old_id) == "new-primary"
    assert store.get_real_id("bystander") == "new-primary"

    loaded = store.load("new-primary")
    assert loaded.aliases == [old_id, "bystander"]
    assert list(loaded.files) == ["a.txt", "b.txt"]
    assert (notes_root / "new-primary" / "files" / "a.txt").read_bytes() == b"alpha"
    assert not (notes_root / "new-primary" / "_promote.json").exists()


def test_make_primary_requires_own_alias(store, paste):
    other = store.create({}, paste_id="other")
    other.add_alias("theirs")
    with pytest.raises(NotAssociatedError):
        paste.make_primary("theirs")
    assert paste.id == "two-files"


def test_make_primary_then_delete_removes_everything(store, paste):
    old_id = paste.id
    paste.add_alias("promoted")
    paste.add_alias("extra")
    paste.make_primary("promoted")
    paste.delete()
    for ident in (old_id, "promoted", "extra"):
        assert not store.id_in_use(ident)


def test_recovery_finishes_promotion_interrupted_before_rename(store, paste, notes_root):
    old_id = paste.id
    paste.add_alias("target")
    paste.add_alias("bystander")
    marker = PromotionMarker(old_id=old_id, new_id="target", aliases=["bystander"])
    (paste.root / "_promote.json").write_text(json.dumps(marker.to_json_dict()), encoding="utf-8")
    # Crash right after the promoted alias directory was removed.
    aliases.remove_alias_dir(store.root, "target")

    results = store.recover_interrupted_promotions()

    assert [(r.item, r.success) for r in results] == [("target", True)]
    assert store.exists("target")
    assert store.get_real_id(old_id) == "target"
    assert store.get_real_id("bystander") == "target"
    assert store.load("target").aliases == [old_id, "bystander"]
    assert not (notes_root / "target" / "_promote.json").exists()


def test_recovery_finishes_promotion_interrupted_after_rename(store, paste, notes_root):
    old_id = paste.id
    paste.add_alias("target")
    paste.add_alias("bystander")
    marker = PromotionMarker(old_id=old_id, new_id="target", aliases=["bystander"])
    aliases.remove_alias_dir(store.root, "target")
    paste.root.rename(notes_root / "target")
    (notes_root / "target" / "_promote.json").write_text(json.dumps(marker.to_json_dict()), encoding="utf-8")

    results = store.recover_interrupted_promotions()

    assert [r.success for r in results] == [True]
    assert store.get_real_id(old_id) == "target"
    assert store.get_real_id("bystander") == "target"
    assert store.load("target").aliases == [old_id, "bystander"]


def test_recovery_with_nothing_to_do(store, paste):
    assert store.recover_interrupted_promotions() == []


def test_make_primary_refuses_target_that_is_a_paste(store, paste, notes_root):
    paste.add_alias("clash")
    # The alias directory was replaced by a full paste behind the store's back.
    aliases.remove_alias_dir(store.root, "clash")
    store.create({}, paste_id="clash")

    with pytest.raises(IdentifierConflictError):
        paste.make_primary("clash")

    assert paste.id == "two-files"
    assert not (notes_root / "two-files" / "_promote.json").exists()
    assert store.recover_interrupted_promotions() == []
