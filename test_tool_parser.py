#!/usr/bin/env python3
"""
Tests for tool invocation extraction: tagged text, unclosed-tag recovery,
native calls and fenced code blocks.
"""

from termagent.chat.models import InvocationOrigin, ToolCallData, ToolName
from termagent.chat.tool_parser import EDIT_FORMAT_HINT, WRITE_FORMAT_HINT, extract_invocations


def test_single_tagged_read_and_clean_text():
    parsed = extract_invocations("Let me look.\n<tool:read>src/app.py</tool>")

    assert parsed.source == "tagged"
    assert len(parsed.invocations) == 1
    invocation = parsed.invocations[0]
    assert invocation.tool is ToolName.READ
    assert invocation.args == {"path": "src/app.py"}
    assert invocation.origin is InvocationOrigin.TAGGED
    assert parsed.clean_text == "Let me look."


def test_multiple_tags_keep_document_order():
    text = "<tool:ls>src</tool> then <tool:grep>def main\n*.py</tool> and <tool:git></tool>"
    parsed = extract_invocations(text)

    assert [i.tool for i in parsed.invocations] == [ToolName.LS, ToolName.GREP, ToolName.GIT]
    assert parsed.invocations[1].args == {"pattern": "def main", "glob": "*.py"}
    assert parsed.invocations[2].args == {}


def test_named_closing_tag_is_accepted():
    parsed = extract_invocations("<tool:bash>pytest -q</tool:bash>")
    assert parsed.invocations[0].args == {"command": "pytest -q"}


def test_write_tag_splits_path_and_content():
    parsed = extract_invocations("<tool:write>notes/todo.md\n# Todo\n- ship it\n</tool>")

    invocation = parsed.invocations[0]
    assert invocation.args["path"] == "notes/todo.md"
    assert invocation.args["content"] == "# Todo\n- ship it\n"
    assert invocation.parse_error is None


def test_write_without_content_reports_format_hint():
    parsed = extract_invocations("<tool:write>only-a-path.txt</tool>")

    invocation = parsed.invocations[0]
    assert invocation.tool is ToolName.WRITE
    assert invocation.parse_error == WRITE_FORMAT_HINT


def test_write_content_taken_from_trailing_code_block():
    text = "<tool:write>app.py</tool>\n```python\nprint('hi')\n```\nSaved."
    parsed = extract_invocations(text)

    invocation = parsed.invocations[0]
    assert invocation.parse_error is None
    assert invocation.args == {"path": "app.py", "content": "print('hi')\n"}
    assert parsed.clean_text == "Saved."


def test_edit_tag_grammar():
    text = "<tool:edit>src/app.py\n<<<\nx = 1\n>>>\nx = 2\n</tool>"
    invocation = extract_invocations(text).invocations[0]

    assert invocation.args == {"path": "src/app.py", "old": "x = 1", "new": "x = 2\n"}


def test_malformed_edit_reports_format_hint():
    invocation = extract_invocations("<tool:edit>src/app.py\nreplace x with y</tool>").invocations[0]

    assert invocation.tool is ToolName.EDIT
    assert invocation.parse_error == EDIT_FORMAT_HINT


def test_br_tags_become_newlines():
    invocation = extract_invocations("<tool:write>a.txt<br>hello<br/>world</tool>").invocations[0]
    assert invocation.args == {"path": "a.txt", "content": "hello\nworld"}


def test_unknown_tool_keeps_raw_name():
    invocation = extract_invocations("<tool:fetch>https://example.com</tool>").invocations[0]

    assert invocation.tool is ToolName.UNKNOWN
    assert invocation.display_name == "fetch"
    assert invocation.args == {"raw": "https://example.com"}


def test_unclosed_write_with_fenced_content_is_recovered():
    text = "<tool:write>README.md\n```markdown\n# Title\n```"
    parsed = extract_invocations(text)

    assert parsed.source == "tagged"
    assert parsed.invocations[0].args == {"path": "README.md", "content": "# Title\n"}


def test_unclosed_bash_is_recovered():
    parsed = extract_invocations("Running it.\n<tool:bash>ls -la\nThen I will read.")

    assert [i.args for i in parsed.invocations] == [{"command": "ls -la"}]


def test_tagged_calls_win_over_native_calls():
    native = [ToolCallData(id="c1", name="ls", arguments="{}")]
    parsed = extract_invocations("<tool:read>a.py</tool>", native)

    assert parsed.source == "tagged"
    assert [i.tool for i in parsed.invocations] == [ToolName.READ]


def test_native_call_arguments_are_normalized():
    native = [
        ToolCallData(
            id="c7",
            name="edit",
            arguments='{"filePath": "a.py", "oldStr": "foo", "newStr": "bar"}',
        )
    ]
    parsed = extract_invocations("", native)

    invocation = parsed.invocations[0]
    assert parsed.source == "native"
    assert invocation.origin is InvocationOrigin.NATIVE
    assert invocation.call_id == "c7"
    assert invocation.args == {"path": "a.py", "old": "foo", "new": "bar"}


def test_native_call_with_malformed_json_gets_empty_args():
    native = [ToolCallData(id="c2", name="read", arguments='{"path": "a.py"')]
    invocation = extract_invocations("", native).invocations[0]

    assert invocation.tool is ToolName.READ
    assert invocation.args == {}


def test_fenced_blocks_execute_in_document_order():
    text = "First:\n```python\nprint(1)\n```\nThen:\n```bash\nls\n```\n```js\nalert(1)\n```"
    parsed = extract_invocations(text)

    assert parsed.source == "fenced"
    assert [i.display_name for i in parsed.invocations] == ["auto-python", "auto-bash"]
    assert parsed.invocations[0].args == {"script": "print(1)"}
    assert parsed.invocations[0].origin is InvocationOrigin.FENCED_PYTHON
    assert parsed.invocations[1].args == {"command": "ls"}
    assert "alert(1)" in parsed.clean_text


def test_fenced_blocks_ignored_when_disabled():
    parsed = extract_invocations("```sh\nrm -rf build\n```", allow_fenced=False)
    assert parsed.invocations == []
    assert parsed.source is None


def test_fenced_block_mentioning_a_tool_tag_is_not_executed():
    parsed = extract_invocations("```sh\necho '<tool:read>'\n```")
    assert parsed.invocations == []


def test_plain_answer_has_no_invocations():
    parsed = extract_invocations("The bug is on line 3; change `==` to `is`.")
    assert parsed.invocations == []
    assert parsed.clean_text.startswith("The bug")
