import json

from tools.schemas import CreateFileInput
from tools_create_file import create_file_impl


def _call(**params):
    return create_file_impl(CreateFileInput(**params))


def test_create_new_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = _call(path="data.txt", content="hello")

    payload = json.loads(result.content)
    assert payload["action"] == "create"
    assert payload["path"] == "data.txt"
    assert payload["bytes_written"] == 5
    assert (tmp_path / "data.txt").read_text(encoding="utf-8") == "hello"


def test_existing_file_errors_by_default(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "file.txt").write_text("existing", encoding="utf-8")

    result = _call(path="file.txt", content="new")

    assert result.success is False
    assert result.metadata == {"error_type": "exists"}
    assert (tmp_path / "file.txt").read_text(encoding="utf-8") == "existing"


def test_skip_and_overwrite(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    target = tmp_path / "file.txt"
    target.write_text("existing", encoding="utf-8")

    skipped = json.loads(_call(path="file.txt", if_exists="skip", content="new").content)
    assert skipped["action"] == "skip"
    assert target.read_text(encoding="utf-8") == "existing"

    overwritten = json.loads(_call(path="file.txt", if_exists="overwrite", content="new").content)
    assert overwritten["action"] == "overwrite"
    assert target.read_text(encoding="utf-8") == "new"


def test_parent_directories(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    created = _call(path="nested/dir/file.txt", content="x")
    refused = _call(path="other/file.txt", content="x", create_parents=False)

    assert created.success is True
    assert (tmp_path / "nested" / "dir" / "file.txt").exists()
    assert refused.success is False
    assert refused.metadata == {"error_type": "not_found"}
