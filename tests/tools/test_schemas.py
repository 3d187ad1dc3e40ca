import pytest

from tools.schemas import (
    CreateFileInput,
    ReadFileInput,
    RunTerminalCmdInput,
    schema_validator,
    validate_tool_input,
)


def test_read_file_input_defaults():
    data = ReadFileInput(path="README.md").dump()
    assert data == {"path": "README.md", "encoding": "utf-8", "errors": "replace"}


def test_run_terminal_cmd_rejects_dangerous_command():
    with pytest.raises(ValueError) as exc:
        RunTerminalCmdInput(command="rm -rf /")
    assert "dangerous" in str(exc.value)


def test_create_file_policy_is_normalised():
    assert CreateFileInput(path="a.txt", if_exists="SKIP").if_exists == "skip"
    with pytest.raises(ValueError):
        CreateFileInput(path="a.txt", if_exists="merge")


def test_validate_tool_input_rejects_unknown_fields():
    with pytest.raises(ValueError) as exc:
        validate_tool_input("read_file", {"path": "file.txt", "tail_lines": 10})
    assert "tail_lines" in str(exc.value)


def test_validate_tool_input_unknown_tool_pass_through():
    payload = {"custom": True}
    assert validate_tool_input("unknown", payload) == payload


def test_schema_validator_messages():
    validate = schema_validator("read_file")

    assert validate({"path": "a.txt"}) is None
    assert validate({}).startswith("Invalid arguments for read_file: path")
    assert schema_validator("unknown") is None
