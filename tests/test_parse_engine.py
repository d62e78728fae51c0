import io

import pytest

from stepdb.pipeline import Record, StepRecordParser

from conftest import SAMPLE_RECORDS


def test_parse_file_skips_header_footer_and_continuations(sample_step_file):
    records = StepRecordParser().parse(sample_step_file)

    assert [r.id for r in records] == ["1", "2", "10", "11", "12"]
    assert {r.id: r.definition for r in records} == SAMPLE_RECORDS


def test_wellformed_lines_keep_order_among_malformed():
    lines = [
        b"#5=E;\n",
        b"garbage\n",
        b"#3=C;\n",
        b"\n",
        b"#3 = spaced;\n",
        b"#x=NOTNUM;\n",
        b"#4=D; \n",
        b"#1=A;\n",
        b"#9=;\n",
    ]
    records = StepRecordParser().parse_stream(lines)
    assert records == [Record("5", b"E"), Record("3", b"C"), Record("1", b"A")]


def test_definition_keeps_embedded_separators():
    records = StepRecordParser().parse_stream(io.BytesIO(b"#7=X('a=b';'c');\r\n#8==;\n"))
    assert records == [Record("7", b"X('a=b';'c')"), Record("8", b"=")]


def test_last_line_without_newline_and_text_lines():
    parser = StepRecordParser()
    assert parser.parse_stream(io.BytesIO(b"#1=A;\n#2=B;")) == [Record("1", b"A"), Record("2", b"B")]
    assert parser.parse_stream(["#3=é;\n"]) == [Record("3", "é".encode("utf-8"))]


def test_parse_missing_file_raises_oserror(tmp_path):
    with pytest.raises(OSError):
        StepRecordParser().parse(tmp_path / "missing.stp")
