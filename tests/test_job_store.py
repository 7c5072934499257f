import json

import pytest

from image_batch_service.config import Settings
from image_batch_service.errors import StoreError, StoreErrorKind
from image_batch_service.job_store import InMemoryJobStore, JsonFileJobStore, build_job_store
from image_batch_service.models import JobStatus, Product


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryJobStore()
    return JsonFileJobStore(tmp_path / "jobs.json")


def _products():
    return [Product.from_row({"Product Name": "SKU1", "Input Image Urls": "a.jpg,b.jpg"})]


def _finished(products):
    done = []
    for p in products:
        p = p.model_copy(deep=True)
        p.outputImageRefs = [f"out-{ref}" for ref in p.inputImageRefs]
        p.imageErrors = [None] * len(p.inputImageRefs)
        done.append(p)
    return done


def test_create_then_get(store):
    store.create("job-1", _products())
    job = store.get("job-1")

    assert job.requestId == "job-1"
    assert job.status is JobStatus.PROCESSING
    assert job.completedAt is None
    assert job.products[0].inputImageRefs == ["a.jpg", "b.jpg"]
    assert job.products[0].model_dump()["Product Name"] == "SKU1"


def test_duplicate_id_rejected(store):
    store.create("job-1", _products())
    with pytest.raises(StoreError) as info:
        store.create("job-1", _products())
    assert info.value.kind is StoreErrorKind.DUPLICATE_ID


def test_unknown_id_not_found(store):
    with pytest.raises(StoreError) as info:
        store.get("missing")
    assert info.value.kind is StoreErrorKind.NOT_FOUND

    with pytest.raises(StoreError) as info:
        store.update_terminal("missing", JobStatus.COMPLETED, [])
    assert info.value.kind is StoreErrorKind.NOT_FOUND


def test_terminal_update_is_final(store):
    products = _products()
    store.create("job-1", products)
    job = store.update_terminal("job-1", JobStatus.COMPLETED, _finished(products))

    assert job.status is JobStatus.COMPLETED
    assert job.completedAt is not None
    assert store.get("job-1").products[0].outputImageRefs == ["out-a.jpg", "out-b.jpg"]

    with pytest.raises(StoreError) as info:
        store.update_terminal("job-1", JobStatus.FAILED, _finished(products))
    assert info.value.kind is StoreErrorKind.TERMINAL
    assert store.get("job-1").status is JobStatus.COMPLETED


def test_terminal_update_requires_complete_outputs(store):
    products = _products()
    store.create("job-1", products)
    with pytest.raises(ValueError):
        store.update_terminal("job-1", JobStatus.COMPLETED, products)
    assert store.get("job-1").status is JobStatus.PROCESSING


def test_terminal_update_requires_terminal_status(store):
    store.create("job-1", [])
    with pytest.raises(ValueError):
        store.update_terminal("job-1", JobStatus.PROCESSING, [])


def test_get_returns_independent_copy(store):
    store.create("job-1", _products())
    first = store.get("job-1")
    first.products[0].inputImageRefs.append("tampered.jpg")
    first.status = JobStatus.FAILED

    again = store.get("job-1")
    assert again.status is JobStatus.PROCESSING
    assert again.products[0].inputImageRefs == ["a.jpg", "b.jpg"]


def test_json_store_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "jobs.json"
    products = _products()
    JsonFileJobStore(path).create("job-1", products)
    JsonFileJobStore(path).update_terminal("job-1", JobStatus.COMPLETED, _finished(products))

    document = json.loads(path.read_text())
    assert document[0]["requestId"] == "job-1"
    assert document[0]["status"] == "Completed"
    assert document[0]["products"][0]["Product Name"] == "SKU1"
    assert JsonFileJobStore(path).get("job-1").status is JobStatus.COMPLETED


def test_json_store_write_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    store = JsonFileJobStore(blocker / "jobs.json")

    with pytest.raises(StoreError) as info:
        store.create("job-1", [])
    assert info.value.kind is StoreErrorKind.WRITE_FAILURE


def test_build_job_store_backends(tmp_path):
    assert isinstance(build_job_store(Settings(job_store_backend="memory")), InMemoryJobStore)
    store = build_job_store(Settings(job_store_backend="json", job_store_path=tmp_path / "j.json"))
    assert isinstance(store, JsonFileJobStore)


@pytest.mark.parametrize("content", ["{not json", '[{"requestId": "job-1"}]', "42"])
def test_json_store_unreadable_document(tmp_path, content):
    path = tmp_path / "jobs.json"
    path.write_text(content)
    store = JsonFileJobStore(path)

    with pytest.raises(StoreError) as info:
        store.get("job-1")
    assert info.value.kind is StoreErrorKind.READ_FAILURE
    assert info.value.job_id == "job-1"

    with pytest.raises(StoreError) as info:
        store.create("job-2", [])
    assert info.value.kind is StoreErrorKind.READ_FAILURE
    assert path.read_text() == content
