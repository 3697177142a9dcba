from __future__ import annotations

import io
import json

import pytest

from drg.apply import apply, load_documents
from drg.errors import DrogueError, MissingApplicationError
from drg.outcome import SuccessWithMessage

from conftest import API_URL


@pytest.fixture
def client(cloud):
    return cloud.client_class()(base_url=API_URL)


def _write(path, document) -> str:
    path.write_text(json.dumps(document) if isinstance(document, dict) else document, encoding="utf-8")
    return str(path)


def test_malformed_document_does_not_stop_the_batch(tmp_path, client, cloud) -> None:
    first = _write(tmp_path / "a.json", {"metadata": {"name": "app1"}, "spec": {}})
    second = _write(tmp_path / "b.json", "{")
    third = _write(
        tmp_path / "c.yaml",
        "metadata:\n  name: dev1\n  application: app1\nspec: {}\n",
    )

    batch = apply(client, [first, second, third])

    labels = [label for label, _ in batch.entries]
    assert labels == [first, second, third]
    results = [result for _, result in batch.entries]
    assert results[0] == SuccessWithMessage("Success creating app app1")
    assert isinstance(results[1], DrogueError)
    assert results[2] == SuccessWithMessage("Success creating device dev1")
    assert not batch.succeeded
    assert "app1" in cloud.apps
    assert ("app1", "dev1") in cloud.devices


def test_device_for_missing_application_is_rejected_without_create(tmp_path, client, cloud) -> None:
    path = _write(tmp_path / "dev.json", {"metadata": {"name": "dev1", "application": "ghost"}})

    batch = apply(client, [path])

    (_, result), = batch.entries
    assert isinstance(result, MissingApplicationError)
    assert not any(call.startswith("create_device") for call in cloud.calls)


def test_existing_resource_is_updated_with_current_version(tmp_path, client, cloud) -> None:
    cloud.apps["app1"] = {"metadata": {"name": "app1", "resourceVersion": "7"}, "spec": {"old": True}}
    path = _write(tmp_path / "app.json", {"metadata": {"name": "app1"}, "spec": {"new": True}})

    batch = apply(client, [path])

    assert batch.entries[0][1] == SuccessWithMessage("Success updating app app1")
    assert cloud.apps["app1"]["metadata"]["resourceVersion"] == "7"
    assert cloud.apps["app1"]["spec"] == {"new": True}


def test_directory_inputs_skip_hidden_files_and_subdirectories(tmp_path) -> None:
    (tmp_path / "nested").mkdir()
    _write(tmp_path / ".hidden.json", {"metadata": {"name": "hidden"}})
    _write(tmp_path / "b.json", {"metadata": {"name": "b"}})
    _write(tmp_path / "a.json", {"metadata": {"name": "a"}})

    loaded = load_documents([str(tmp_path)])

    assert [label for label, _ in loaded] == [str(tmp_path / "a.json"), str(tmp_path / "b.json")]


def test_stdin_document(client, cloud) -> None:
    stdin = io.StringIO(json.dumps({"metadata": {"name": "from-stdin"}}))

    batch = apply(client, ["-"], stdin=stdin)

    assert batch.entries == [("stdin", SuccessWithMessage("Success creating app from-stdin"))]


def test_document_without_name_is_reported(tmp_path, client) -> None:
    path = _write(tmp_path / "noname.json", {"metadata": {}})
    batch = apply(client, [path])
    assert isinstance(batch.entries[0][1], DrogueError)


def test_unreadable_path_is_reported(tmp_path, client) -> None:
    batch = apply(client, [str(tmp_path / "missing.json")])
    assert isinstance(batch.entries[0][1], DrogueError)
