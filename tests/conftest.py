import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import pytest  # noqa: E402

from mediasync.config import Settings  # noqa: E402
from mediasync.models import Folder, FolderTree  # noqa: E402
from mediasync.schemas import CdnResource, CmsFile  # noqa: E402
from mediasync.services.cdn_service import normalize_asset  # noqa: E402
from mediasync.services.cms_service import to_media_entry  # noqa: E402
from mediasync.services.reference_writer import ReferenceBuilder  # noqa: E402
from mediasync.workflow import RunContext  # noqa: E402

CLOUD = "demo"
ROOT = "beckwithbarrow"
REFERENCE_NAMES = {"cloudinary", "cloudinary-reference", "cdn-reference"}


def make_asset(public_id, *, width=2000, height=1333, version="1700000000", fmt="jpg", size=400_000):
    full_id = f"{ROOT}/{public_id}"
    resource = CdnResource(
        public_id=full_id,
        secure_url=f"https://res.cloudinary.com/{CLOUD}/image/upload/v{version}/{full_id}.{fmt}",
        width=width,
        height=height,
        bytes=size,
        version=version,
        format=fmt,
    )
    return normalize_asset(resource, root=ROOT)


class FakeCdn:
    def __init__(self, assets=(), folders=()):
        self.assets = list(assets)
        self.folders = list(folders)
        self.skipped = []
        self.broken = {}
        self.checked = []

    def list_assets(self, root_folder=None, folder=None):
        return list(self.assets)

    def list_folders(self, root_folder=None):
        return list(self.folders)

    def check_url(self, url):
        self.checked.append(url)
        return self.broken.get(url)

    def close(self):
        pass


class FakeCms:
    """In-memory Strapi media library speaking the CmsService interface."""

    def __init__(self, *, folders=(), files=(), root_folder_id=None):
        self.root_folder_id = root_folder_id
        self.folders = {folder.id: folder for folder in folders}
        self.files = {raw["id"]: dict(raw) for raw in files}
        self.next_id = 1000
        self.calls = []
        self.failures = {}
        self.skipped = []

    def _maybe_fail(self, key):
        exc = self.failures.pop(key, None)
        if exc is not None:
            raise exc

    def _entry(self, raw):
        return to_media_entry(CmsFile.model_validate(raw), reference_provider_names=REFERENCE_NAMES)

    def _new_id(self):
        self.next_id += 1
        return self.next_id

    def list_folders(self):
        self.calls.append(("list_folders",))
        return FolderTree(self.folders.values(), root_id=self.root_folder_id)

    def list_media(self, folder_id=None):
        self.calls.append(("list_media", folder_id))
        entries = [self._entry(raw) for _, raw in sorted(self.files.items())]
        if folder_id is not None:
            entries = [entry for entry in entries if entry.folder_id == folder_id]
        return entries

    def get_media(self, media_id):
        raw = self.files.get(media_id)
        return self._entry(raw) if raw else None

    def create_folder(self, name, parent_id):
        self.calls.append(("create_folder", name, parent_id))
        self._maybe_fail(f"create_folder:{name}")
        folder = Folder(id=self._new_id(), name=name, parent_id=parent_id)
        self.folders[folder.id] = folder
        return folder

    def create_media_reference(self, payload):
        self.calls.append(("create_media_reference", payload["name"]))
        self._maybe_fail(f"create:{payload['name']}")
        raw = {**payload, "id": self._new_id()}
        self.files[raw["id"]] = raw
        return self._entry(raw)

    def upload_placeholder(self, *, name, folder_id):
        self.calls.append(("upload_placeholder", name))
        raw = {
            "id": self._new_id(),
            "name": name,
            "url": f"/uploads/{name}",
            "provider": "local",
            "folder": folder_id,
        }
        self.files[raw["id"]] = raw
        return raw["id"]

    def update_media(self, media_id, fields):
        self.calls.append(("update_media", media_id))
        self._maybe_fail(f"update:{media_id}")
        raw = self.files[media_id]
        raw.update(fields)
        return self._entry(raw)

    def delete_media(self, media_id):
        self.calls.append(("delete_media", media_id))
        self._maybe_fail(f"delete:{media_id}")
        return self.files.pop(media_id, None) is not None

    def mutations(self):
        reads = {"list_folders", "list_media"}
        return [call for call in self.calls if call[0] not in reads]

    def close(self):
        pass


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        cloudinary_name=CLOUD,
        cloudinary_key="key",
        cloudinary_secret="secret",
        strapi_base_url="https://cms.example.com",
        strapi_api_token="token",
        request_delay_seconds=0,
    )


@pytest.fixture
def builder(settings):
    return ReferenceBuilder.from_settings(settings)


@pytest.fixture
def asset_factory():
    return make_asset


@pytest.fixture
def fakes():
    return FakeCdn, FakeCms


@pytest.fixture
def context_factory(settings, builder):
    def factory(cdn, cms, *, out=None):
        printed = []
        ctx = RunContext(
            settings=settings,
            cdn=cdn,
            cms=cms,
            builder=builder,
            run_id="test-run",
            out=out or printed.append,
        )
        ctx.printed = printed
        return ctx

    return factory
