from mediasync.models import (
    ActionKind,
    CreateFolder,
    CreateReference,
    DeleteEntry,
    Folder,
    FolderTree,
    MediaEntry,
    Scope,
    UpdateReference,
)
from mediasync.services.comparator import FolderStatus, compare
from mediasync.services.leftovers import NamePrefixLeftoverStrategy
from mediasync.utils.media_variants import Provider


def _reference_entry(builder, asset, *, entry_id, folder_id):
    expected = builder.expected(asset)
    return MediaEntry(
        id=entry_id,
        name=asset.filename,
        folder_id=folder_id,
        url=expected.url,
        formats=dict(expected.formats),
        provider=Provider.cdn_reference,
        provider_name="cloudinary",
    )


def test_agricola_image_plans_folder_then_reference(builder, asset_factory):
    assets = [
        asset_factory("agricola/agricola_001"),
        asset_factory("agricola/thumbnails/thumbnail_agricola_001"),
    ]

    comparison = compare(assets, [], FolderTree([]), builder=builder, cdn_folders=["agricola"])

    assert [type(action) for action in comparison.actions] == [CreateFolder, CreateReference]
    folder, reference = comparison.actions
    assert folder.path == "agricola"
    assert folder.parent_id is None
    assert reference.asset.public_id == "beckwithbarrow/agricola/agricola_001"
    assert comparison.folder_status == {"agricola": FolderStatus.needs_creation}
    assert comparison.counts["createReference"] == 1
    assert comparison.counts["orphanVariant"] == 0


def test_existing_reference_is_a_noop(builder, asset_factory):
    asset = asset_factory("agricola/agricola_001")
    tree = FolderTree([Folder(id=4, name="agricola")])
    media = [_reference_entry(builder, asset, entry_id=10, folder_id=4)]

    comparison = compare([asset], media, tree, builder=builder, cdn_folders=["agricola"])

    assert comparison.actions == ()
    assert comparison.counts["noop"] == 1
    assert comparison.folder_status == {"agricola": FolderStatus.exists}


def test_native_entry_with_matching_name_is_updated_not_deleted(builder, asset_factory):
    asset = asset_factory("agricola/agricola_001")
    tree = FolderTree([Folder(id=4, name="agricola")])
    native = MediaEntry(
        id=11,
        name="agricola_001.jpg",
        folder_id=4,
        url="/uploads/agricola_001_5f2c.jpg",
        provider_name="local",
    )

    comparison = compare(
        [asset],
        [native],
        tree,
        builder=builder,
        leftover_strategy=NamePrefixLeftoverStrategy(),
    )

    assert [type(action) for action in comparison.actions] == [UpdateReference]
    update = comparison.actions[0]
    assert update.media_entry_id == 11
    assert "provider_mismatch" in update.reasons
    assert dict(update.new_urls)["url"] == asset.url


def test_stale_version_triggers_update(builder, asset_factory):
    old = asset_factory("agricola/agricola_001", version="1600000000")
    new = asset_factory("agricola/agricola_001", version="1700000000")
    tree = FolderTree([Folder(id=4, name="agricola")])
    media = [_reference_entry(builder, old, entry_id=10, folder_id=4)]

    comparison = compare([new], media, tree, builder=builder)

    assert [action.kind for action in comparison.actions] == [ActionKind.update_reference]
    assert comparison.violations == ()


def test_variants_without_original_are_orphans(builder, asset_factory):
    assets = [asset_factory("agricola/thumbnails/thumbnail_agricola_009")]

    comparison = compare(assets, [], FolderTree([Folder(id=4, name="agricola")]), builder=builder)

    assert comparison.actions == ()
    assert len(comparison.orphan_variants) == 1
    orphan = comparison.orphan_variants[0]
    assert (orphan.folder, orphan.basename, orphan.variants) == ("agricola", "agricola_009", ("thumbnail",))


def test_missing_parent_folders_are_created_parents_first(builder, asset_factory):
    assets = [asset_factory("projects/agricola/details/detail_01")]

    comparison = compare(assets, [], FolderTree([]), builder=builder)

    folders = [action.path for action in comparison.actions if isinstance(action, CreateFolder)]
    assert folders == ["projects", "projects/agricola", "projects/agricola/details"]
    assert comparison.actions[-1].kind == ActionKind.create_reference


def test_haythorne_native_leftover_is_a_delete_candidate(builder):
    leftover = MediaEntry(
        id=109,
        name="haythorne_0109.jpg",
        folder_id=None,
        url="/uploads/haythorne_0109_a1b2.jpg",
        provider_name="native-upload",
    )

    comparison = compare([], [leftover], FolderTree([]), builder=builder)

    assert comparison.plan_for("cleanup") == [
        DeleteEntry(
            media_entry_id=109,
            name="haythorne_0109.jpg",
            folder_id=None,
            reason="native_without_cdn_asset",
        )
    ]
    assert comparison.plan_for("migrate") == []


def test_native_entry_with_cdn_counterpart_elsewhere_is_kept(builder, asset_factory):
    asset = asset_factory("haythorne/haythorne_0110")
    entry = MediaEntry(id=5, name="haythorne_0110.jpg", folder_id=None, url="/uploads/h.jpg")

    comparison = compare([asset], [entry], FolderTree([Folder(id=2, name="haythorne")]), builder=builder)

    assert comparison.actions_of(ActionKind.delete_entry) == []


def test_scope_limits_actions_to_one_folder(builder, asset_factory):
    assets = [asset_factory("agricola/agricola_001"), asset_factory("haythorne/haythorne_0001")]
    stray = MediaEntry(id=3, name="old_logo.png", folder_id=None, url="/uploads/old_logo.png")

    comparison = compare(
        assets,
        [stray],
        FolderTree([]),
        builder=builder,
        cdn_folders=["agricola", "haythorne"],
        scope=Scope.for_folder("agricola"),
    )

    paths = {
        getattr(action, "path", None) or getattr(action, "target_folder_path", None)
        for action in comparison.actions
    }
    assert paths == {"agricola"}
    assert comparison.actions_of(ActionKind.delete_entry) == []


def test_asset_scope_touches_a_single_image(builder, asset_factory):
    assets = [asset_factory("agricola/agricola_001"), asset_factory("agricola/agricola_002")]
    tree = FolderTree([Folder(id=4, name="agricola")])

    comparison = compare(
        assets,
        [],
        tree,
        builder=builder,
        scope=Scope.for_asset("beckwithbarrow/agricola/agricola_002", root="beckwithbarrow"),
    )

    assert [action.asset.basename for action in comparison.actions] == ["agricola_002"]


def test_duplicate_entries_keep_lowest_id_and_delete_the_rest(builder, asset_factory):
    asset = asset_factory("agricola/agricola_001")
    tree = FolderTree([Folder(id=4, name="agricola")])
    media = [
        _reference_entry(builder, asset, entry_id=30, folder_id=4),
        _reference_entry(builder, asset, entry_id=12, folder_id=4),
    ]

    comparison = compare([asset], media, tree, builder=builder)

    assert comparison.duplicates[0].kept_id == 12
    assert comparison.duplicates[0].duplicate_ids == (30,)
    assert comparison.plan_for("migrate") == []
    deletes = comparison.plan_for("cleanup")
    assert [(d.media_entry_id, d.reason) for d in deletes] == [(30, "duplicate_of:12")]
    assert [n.media_entry_id for n in comparison.noops] == [12]


def test_native_duplicates_are_deleted_while_the_kept_entry_is_converted(builder, asset_factory):
    asset = asset_factory("a_001")
    media = [
        MediaEntry(id=1, name="a_001.jpg", folder_id=None, url="/uploads/a_001.jpg"),
        MediaEntry(id=2, name="a_001.jpg", folder_id=None, url="/uploads/a_001_x.jpg"),
    ]

    comparison = compare([asset], media, FolderTree([]), builder=builder)

    assert [a.media_entry_id for a in comparison.plan_for("migrate")] == [1]
    assert [(d.media_entry_id, d.reason) for d in comparison.plan_for("cleanup")] == [
        (2, "duplicate_of:1")
    ]


def test_reference_with_off_cdn_url_is_a_violation(builder, asset_factory):
    broken = MediaEntry(
        id=8,
        name="orphan_ref.jpg",
        folder_id=None,
        url="https://cms.example.com/uploads/orphan_ref.jpg",
        provider=Provider.cdn_reference,
        provider_name="cloudinary",
    )

    comparison = compare([], [broken], FolderTree([]), builder=builder)

    assert [v.media_entry_id for v in comparison.violations] == [8]


def test_name_prefix_heuristic_uses_cdn_folder_names(builder, asset_factory):
    entries = [
        MediaEntry(id=1, name="haythorne_0200.jpg", folder_id=None, url="/uploads/a.jpg"),
        MediaEntry(id=2, name="team_photo.jpg", folder_id=None, url="/uploads/b.jpg"),
        MediaEntry(id=3, name="logo_main.png", folder_id=None, url="/uploads/c.png"),
    ]

    comparison = compare(
        [],
        entries,
        FolderTree([]),
        builder=builder,
        cdn_folders=["haythorne"],
        leftover_strategy=NamePrefixLeftoverStrategy(["logo_"]),
    )

    deletes = comparison.actions_of(ActionKind.delete_entry)
    assert [(d.media_entry_id, d.reason) for d in deletes] == [
        (1, "name_prefix:haythorne_"),
        (3, "name_prefix:logo_"),
    ]
    assert comparison.leftover_heuristic is True
