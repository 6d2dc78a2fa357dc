"""Unit tests for the front-matter codec."""

import pytest

from mxp.errors import CorruptionError
from mxp.frontmatter import has_front_matter, parse_document, stringify_document


class TestParseDocument:
    """Test cases for parsing documents."""

    def test_front_matter_and_body(self):
        data, body = parse_document("---\nid: abc\ntitle: Hello\n---\nSome *markdown*\n")
        assert data == {"id": "abc", "title": "Hello"}
        assert body == "Some *markdown*\n"

    def test_no_front_matter(self):
        assert parse_document("Just text") == ({}, "Just text")
        assert not has_front_matter("Just text")

    def test_empty_document(self):
        assert parse_document("") == ({}, "")

    def test_empty_block(self):
        data, body = parse_document("---\n---\nbody")
        assert data == {}
        assert body == "body"

    def test_invalid_yaml(self):
        with pytest.raises(CorruptionError):
            parse_document("---\nid: [unclosed\n---\nbody")

    def test_non_mapping_block(self):
        with pytest.raises(CorruptionError, match="mapping"):
            parse_document("---\n- a\n- b\n---\n")

    def test_windows_line_endings(self):
        data, body = parse_document("---\r\nid: abc\r\n---\r\nbody")
        assert data == {"id": "abc"}
        assert body == "body"


class TestStringifyDocument:
    """Test cases for writing documents."""

    def test_key_order_preserved(self):
        text = stringify_document({"id": "a", "title": "T", "childrenIds": []}, "Body")
        assert text.startswith("---\nid: a\ntitle: T\nchildrenIds: []\n---\n")
        assert text.endswith("Body")

    def test_null_parent_written(self):
        text = stringify_document({"parentId": None})
        assert "parentId: null" in text

    def test_parses_back(self):
        data = {"id": "a", "title": "Ünïcode: colon", "calculatedMetrics": {"readinessLevel": 2}}
        assert parse_document(stringify_document(data, "line one\nline two\n")) == (data, "line one\nline two\n")
