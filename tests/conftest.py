import io
import time

import pytest
from oss2.exceptions import NoSuchKey, ServerError
from PIL import Image as PILImage

from imagespace import build_services, create_app
from imagespace.models.database import build_engine, build_session_factory, init_db
from imagespace.services.generation import GenerationResponse
from imagespace.services.metadataStore import ImageRepository, WorkspaceRepository
from imagespace.services.objectStore import ObjectStore

BASE_URL = "https://test-bucket.oss-cn-hangzhou.aliyuncs.com"


class FakeObjectInfo:
    def __init__(self, key, size, last_modified):
        self.key = key
        self.size = size
        self.last_modified = last_modified


class FakeListResult:
    def __init__(self, object_list, prefix_list, is_truncated, next_marker):
        self.object_list = object_list
        self.prefix_list = prefix_list
        self.is_truncated = is_truncated
        self.next_marker = next_marker


class FakeBucket:
    """In-memory stand-in for oss2.Bucket with per-key failure injection."""

    bucket_name = "test-bucket"

    def __init__(self):
        self.objects = {}
        self.failures = {}

    def fail(self, operation, key):
        self.failures.setdefault(operation, set()).add(key)

    def _check(self, operation, key):
        if key in self.failures.get(operation, ()):
            raise ServerError(500, {}, b"", {"Code": "InternalError", "Message": f"{operation} {key} failed"})

    def _missing(self, key):
        return NoSuchKey(404, {}, b"", {"Code": "NoSuchKey", "Message": f"{key} missing"})

    def put_object(self, key, data):
        self._check("put_object", key)
        self.objects[key] = (bytes(data), int(time.time()))

    def get_object(self, key):
        self._check("get_object", key)
        if key not in self.objects:
            raise self._missing(key)
        return io.BytesIO(self.objects[key][0])

    def object_exists(self, key):
        return key in self.objects

    def delete_object(self, key):
        self._check("delete_object", key)
        self.objects.pop(key, None)

    def batch_delete_objects(self, keys):
        for key in keys:
            self._check("delete_object", key)
        for key in keys:
            self.objects.pop(key, None)

    def copy_object(self, source_bucket_name, source_key, target_key):
        self._check("copy_object", target_key)
        if source_key not in self.objects:
            raise self._missing(source_key)
        self.objects[target_key] = self.objects[source_key]

    def list_objects(self, prefix="", delimiter="", marker="", max_keys=100):
        keys = sorted(k for k in self.objects if k.startswith(prefix) and k > marker)
        objects, prefixes = [], []
        for key in keys:
            rest = key[len(prefix):]
            if delimiter and delimiter in rest:
                common = prefix + rest.split(delimiter, 1)[0] + delimiter
                if common not in prefixes:
                    prefixes.append(common)
                continue
            data, modified = self.objects[key]
            objects.append(FakeObjectInfo(key, len(data), modified))
        page = objects[:max_keys]
        truncated = len(objects) > max_keys
        return FakeListResult(page, prefixes, truncated, page[-1].key if truncated else "")


class FakeGenerator:
    def __init__(self):
        self.response = GenerationResponse()
        self.calls = []

    def generate(self, prompt, images, enable_web_search=False):
        self.calls.append({"prompt": prompt, "images": images, "enable_web_search": enable_web_search})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def make_image_bytes(width=200, height=100, fmt="JPEG", mode="RGB"):
    colors = {"RGB": (200, 30, 30), "RGBA": (200, 30, 30, 128)}
    buf = io.BytesIO()
    PILImage.new(mode, (width, height), color=colors.get(mode, 0)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def bucket():
    return FakeBucket()


@pytest.fixture
def store(bucket):
    return ObjectStore(bucket, BASE_URL, "image")


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def image_repo(session_factory):
    return ImageRepository(session_factory)


@pytest.fixture
def workspace_repo(session_factory):
    return WorkspaceRepository(session_factory)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def config(tmp_path):
    return {"LOG_DIR": str(tmp_path / "logs"), "DATABASE_URL": "sqlite://", "DEFAULT_WORKSPACE": "default"}


@pytest.fixture
def services(config, store, generator, session_factory):
    return build_services(config, store=store, generator=generator, session_factory=session_factory)


@pytest.fixture
def pipeline(services):
    return services.pipeline


@pytest.fixture
def workspace_service(services):
    return services.workspaces


@pytest.fixture
def demo(workspace_service):
    workspace_service.create_workspace("demo")
    return workspace_service.resolve("demo")


@pytest.fixture
def app(config, store, generator, session_factory):
    return create_app(config, store=store, generator=generator, session_factory=session_factory)


@pytest.fixture
def client(app):
    return app.test_client()
