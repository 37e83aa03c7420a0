from mediasync.errors import ConflictError, RemoteServiceError
from mediasync.models import CreateReference, MediaEntry, ResultStatus, UpdateReference
from mediasync.services.reference_writer import (
    ReferenceWriter,
    build_reference_payload,
    build_update_patch,
    scaled_dimensions,
)
from mediasync.utils.media_variants import SIZE_CLASSES, Variant


def test_scaled_dimensions_preserve_aspect_and_never_upscale():
    assert scaled_dimensions(1600, 1200, SIZE_CLASSES[Variant.thumbnail]) == (208, 156)
    assert scaled_dimensions(1600, 1200, SIZE_CLASSES[Variant.small]) == (500, 375)
    assert scaled_dimensions(200, 100, SIZE_CLASSES[Variant.large]) == (200, 100)
    assert scaled_dimensions(0, 100, SIZE_CLASSES[Variant.small]) == (0, 0)


def test_reference_payload_points_every_url_at_the_cdn(settings, asset_factory):
    asset = asset_factory("agricola/agricola_001", width=1600, height=1200, size=480_000)

    payload = build_reference_payload(asset, 4, settings)

    assert payload["name"] == "agricola_001.jpg"
    assert payload["folder"] == 4
    assert payload["provider"] == "cloudinary"
    assert payload["mime"] == "image/jpeg"
    assert payload["ext"] == ".jpeg"
    assert payload["url"] == asset.url
    assert sorted(payload["formats"]) == ["large", "medium", "small", "thumbnail"]
    assert payload["formats"]["small"]["url"] == (
        "https://res.cloudinary.com/demo/image/upload/c_limit,w_500,h_500/"
        "v1700000000/beckwithbarrow/agricola/agricola_001.jpg"
    )
    thumbnail = payload["formats"]["thumbnail"]
    assert (thumbnail["width"], thumbnail["height"]) == (208, 156)
    # Size scales with area: 208*156 / (1600*1200) of the original bytes.
    assert thumbnail["sizeInBytes"] == round(480_000 * (208 * 156) / (1600 * 1200))
    assert payload["provider_metadata"] == {
        "public_id": "beckwithbarrow/agricola/agricola_001",
        "version": "1700000000",
        "format": "jpg",
        "resource_type": "image",
    }


def test_update_patch_only_touches_reference_fields(settings, asset_factory):
    patch = build_update_patch(asset_factory("agricola/agricola_001"), settings)

    assert sorted(patch) == ["formats", "provider", "provider_metadata", "url"]


def test_mismatches_flag_native_entries(builder, asset_factory):
    asset = asset_factory("haythorne/haythorne_0001")
    native = MediaEntry(id=3, name="haythorne_0001.jpg", folder_id=2, url="/uploads/haythorne_0001.jpg")

    reasons = builder.mismatches(native, asset)

    assert "off_cdn_url" in reasons
    assert "provider_mismatch" in reasons
    assert "url_mismatch" in reasons


def test_writer_creates_reference_in_resolved_folder(builder, asset_factory, fakes):
    _, FakeCms = fakes
    cms = FakeCms()
    asset = asset_factory("agricola/agricola_001")
    action = CreateReference(asset=asset, target_folder_path="agricola", target_folder_id=None)

    results = ReferenceWriter(cms, builder).execute([action], folder_ids={"agricola": 77})

    assert [r.status for r in results] == [ResultStatus.applied]
    entry = cms.get_media(results[0].entry_id)
    assert entry.folder_id == 77
    assert not builder.mismatches(entry, asset)


def test_writer_uses_placeholder_when_binary_upload_required(builder, asset_factory, fakes):
    _, FakeCms = fakes
    cms = FakeCms()
    asset = asset_factory("agricola/agricola_001")
    action = CreateReference(asset=asset, target_folder_path="", target_folder_id=None)

    writer = ReferenceWriter(cms, builder, requires_binary_upload=True)
    results = writer.execute([action], folder_ids={"": None})

    assert [call[0] for call in cms.mutations()] == ["upload_placeholder", "update_media"]
    entry = cms.get_media(results[0].entry_id)
    assert entry.url == asset.url
    assert not builder.mismatches(entry, asset)


def test_writer_skips_references_whose_folder_failed(builder, asset_factory, fakes):
    _, FakeCms = fakes
    cms = FakeCms()
    action = CreateReference(
        asset=asset_factory("agricola/agricola_001"),
        target_folder_path="agricola",
        target_folder_id=None,
    )

    results = ReferenceWriter(cms, builder).execute(
        [action], folder_ids={}, failed_paths={"agricola"}
    )

    assert results[0].status == ResultStatus.failed
    assert cms.mutations() == []


def test_writer_isolates_per_item_failures(builder, asset_factory, fakes):
    _, FakeCms = fakes
    cms = FakeCms()
    first = asset_factory("agricola/agricola_001")
    second = asset_factory("agricola/agricola_002")
    cms.failures["create:agricola_001.jpg"] = RemoteServiceError("bad payload", status_code=400)

    results = ReferenceWriter(cms, builder).execute(
        [
            CreateReference(asset=first, target_folder_path="", target_folder_id=None),
            CreateReference(asset=second, target_folder_path="", target_folder_id=None),
        ],
        folder_ids={"": None},
    )

    assert [r.status for r in results] == [ResultStatus.failed, ResultStatus.applied]
    assert results[0].error == "RemoteServiceError"


def test_writer_reports_vanished_entry_on_update(builder, asset_factory, fakes):
    _, FakeCms = fakes
    cms = FakeCms()
    asset = asset_factory("agricola/agricola_001")
    action = UpdateReference(
        media_entry_id=404,
        name="agricola_001.jpg",
        folder_path="agricola",
        asset=asset,
        new_urls=(("url", asset.url),),
    )

    cms.failures["update:404"] = ConflictError("gone", status_code=404, context={"id": 404})

    results = ReferenceWriter(cms, builder).execute([action], folder_ids={})

    assert results[0].status == ResultStatus.failed
    assert results[0].error == "ConflictError"
    assert "no longer exists" in results[0].detail
