import json

import httpx
import pytest

from mediasync.errors import ConflictError, RemoteServiceError, TransientNetworkError
from mediasync.retry import RetryPolicy
from mediasync.services.cms_service import CmsService
from mediasync.utils.media_variants import Provider


def _file(file_id, name, **extra):
    return {
        "id": file_id,
        "name": name,
        "url": f"/uploads/{name}",
        "provider": "local",
        "formats": None,
        **extra,
    }


def _service(handler, **kwargs):
    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=3))
    return CmsService(
        base_url="https://cms.example.com",
        api_token="token",
        transport=httpx.MockTransport(handler),
        sleep=lambda _: None,
        **kwargs,
    )


def test_list_media_paginates_until_short_page():
    pages = []

    def handler(request):
        assert request.headers["Authorization"] == "Bearer token"
        page = int(request.url.params["pagination[page]"])
        pages.append(page)
        if page == 1:
            return httpx.Response(200, json=[_file(1, "a.jpg"), _file(2, "b.jpg")])
        return httpx.Response(200, json=[_file(3, "c.jpg")])

    entries = _service(handler, page_size=2).list_media()

    assert pages == [1, 2]
    assert [entry.id for entry in entries] == [1, 2, 3]


def test_list_media_refuses_a_listing_truncated_by_the_page_bound():
    pages = []

    def handler(request):
        pages.append(int(request.url.params["pagination[page]"]))
        return httpx.Response(200, json=[_file(len(pages), f"{len(pages)}.jpg")])

    with pytest.raises(RemoteServiceError) as excinfo:
        _service(handler, page_size=1, max_pages=3).list_media()

    assert pages == [1, 2, 3]
    assert excinfo.value.context["listed"] == 3


def test_list_media_follows_page_count_past_a_clamped_page():
    pages = []

    def handler(request):
        page = int(request.url.params["pagination[page]"])
        pages.append(page)
        return httpx.Response(
            200,
            json={
                "data": [_file(page, f"{page}.jpg")],
                "meta": {"pagination": {"page": page, "pageSize": 1, "pageCount": 2}},
            },
        )

    entries = _service(handler, page_size=100).list_media()

    assert pages == [1, 2]
    assert [entry.id for entry in entries] == [1, 2]


def test_list_media_filters_by_folder_and_maps_relations():
    captured = {}

    def handler(request):
        captured["filter"] = request.url.params.get("filters[folder][id][$eq]")
        return httpx.Response(
            200,
            json={
                "data": [
                    _file(
                        7,
                        "agricola_001.jpg",
                        provider="cloudinary",
                        folder={"id": 4, "name": "agricola"},
                        formats={
                            "thumbnail": {
                                "url": "https://res.cloudinary.com/demo/image/upload/t.jpg",
                                "width": 234,
                                "height": 156,
                                "size": 9.5,
                            }
                        },
                    ),
                    _file(8, "stray.jpg", folder={"id": 5}),
                ],
                "meta": {"pagination": {"page": 1, "pageCount": 1}},
            },
        )

    entries = _service(handler).list_media(folder_id=4)

    assert captured["filter"] == "4"
    assert [entry.id for entry in entries] == [7]
    entry = entries[0]
    assert entry.folder_id == 4
    assert entry.provider == Provider.cdn_reference
    assert entry.formats["thumbnail"].size_bytes == 9728


def test_list_media_skips_malformed_entries():
    def handler(request):
        return httpx.Response(200, json=[{"name": "no-id.jpg"}, _file(2, "ok.jpg")])

    service = _service(handler)
    entries = service.list_media()

    assert [entry.id for entry in entries] == [2]
    assert len(service.skipped) == 1


def test_list_folders_flattens_nested_children():
    def handler(request):
        assert request.url.path == "/api/upload/folders"
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "id": 1,
                        "name": "agricola",
                        "parent": None,
                        "children": [{"id": 2, "name": "details", "children": {"count": 0}}],
                    },
                    {"id": 3, "name": "haythorne", "parent": {"id": None}},
                ]
            },
        )

    tree = _service(handler).list_folders()

    assert tree.paths() == ["agricola", "agricola/details", "haythorne"]
    assert tree.get(2).parent_id == 1


def test_create_folder_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request.method)
        return httpx.Response(503, json={"error": {"message": "unavailable"}})

    with pytest.raises(TransientNetworkError):
        _service(handler).create_folder("agricola", None)
    assert calls == ["POST"]


def test_create_folder_posts_name_and_parent():
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"id": 12, "name": "details", "parent": 4}})

    folder = _service(handler).create_folder("details", 4)

    assert captured["body"] == {"data": {"name": "details", "parent": 4}}
    assert (folder.id, folder.name, folder.parent_id) == (12, "details", 4)


def test_upload_placeholder_sends_single_pixel_png():
    captured = {}

    def handler(request):
        captured["content_type"] = request.headers["Content-Type"]
        captured["body"] = request.content
        return httpx.Response(200, json=[{"id": 55, "name": "agricola_001.jpg"}])

    media_id = _service(handler).upload_placeholder(name="agricola_001.jpg", folder_id=4)

    assert media_id == 55
    assert captured["content_type"].startswith("multipart/form-data")
    assert b"placeholder.png" in captured["body"]
    assert b"\x89PNG" in captured["body"]


def test_update_media_missing_entry_is_conflict():
    def handler(request):
        assert request.method == "PUT"
        return httpx.Response(404, json={"error": {"message": "Not Found"}})

    with pytest.raises(ConflictError):
        _service(handler).update_media(9, {"url": "https://res.cloudinary.com/demo/x.jpg"})


def test_delete_media_treats_missing_entry_as_already_deleted():
    responses = iter([httpx.Response(200, json={"id": 3}), httpx.Response(404, json={})])

    def handler(request):
        assert request.method == "DELETE"
        assert request.url.path == "/api/upload/files/3"
        return next(responses)

    service = _service(handler)

    assert service.delete_media(3) is True
    assert service.delete_media(3) is False
