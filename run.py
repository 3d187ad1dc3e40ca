from tools.builtins import Tool
from tools_create_file import create_file_tool_def, create_file_impl
from tools_read import read_file_tool_def, read_file_impl
from tools_run_terminal_cmd import (
    format_run_terminal_cmd,
    run_terminal_cmd_impl,
    run_terminal_cmd_tool_def,
)


def build_default_tools() -> list[Tool]:
    return [
        Tool(**read_file_tool_def(), fn=read_file_impl, capabilities={"read_fs"}),
        Tool(**create_file_tool_def(), fn=create_file_impl, capabilities={"write_fs"}),
        Tool(
            **run_terminal_cmd_tool_def(),
            fn=run_terminal_cmd_impl,
            capabilities={"exec_shell"},
            formatter=format_run_terminal_cmd,
        ),
    ]


def main() -> None:
    from cli import main as cli_main

    raise SystemExit(cli_main())


if __name__ == "__main__":
    main()
