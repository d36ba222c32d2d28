"""
Unit tests for wire models and query encoding.
"""

import pytest
from pydantic import ValidationError

from couchbind_sdk.models import (
    ChangeEvent,
    ChangesRequest,
    DeleteResponse,
    PutQueryParameters,
    ViewRequest,
    ViewResult,
    ViewRow,
    encode_query,
)


class TestEncodeQuery:
    """Tests for encode_query."""

    def test_none_parameters(self):
        assert encode_query(None) == {}

    def test_drops_none_and_formats_booleans(self):
        """Unset parameters are omitted; booleans are lowercase."""
        params = encode_query(ViewRequest(descending=True, include_docs=False, limit=10))

        assert params == {"descending": "true", "include_docs": "false", "limit": "10"}

    def test_key_parameters_are_json(self):
        """Keys are JSON values, strings included."""
        params = encode_query(ViewRequest(key="ASD", start_key=["a", 1], end_key={}))

        assert params == {"key": '"ASD"', "start_key": '["a",1]', "end_key": "{}"}

    def test_keys_list(self):
        params = encode_query(ViewRequest(keys=["a", "b"]))

        assert params == {"keys": '["a","b"]'}

    def test_plain_string_parameter(self):
        assert encode_query(PutQueryParameters(batch="ok")) == {"batch": "ok"}

    def test_negative_paging_rejected(self):
        with pytest.raises(ValidationError):
            ViewRequest(limit=-1)
        with pytest.raises(ValidationError):
            ViewRequest(skip=-5)


class TestChangesRequest:
    """Tests for ChangesRequest."""

    def test_query_is_continuous(self):
        params = ChangesRequest(include_docs=True, heartbeat=1000).query(since="5-abc")

        assert params == {
            "feed": "continuous",
            "include_docs": "true",
            "heartbeat": "1000",
            "since": "5-abc",
        }
        assert ChangesRequest().body() is None

    def test_selector_goes_to_body(self):
        request = ChangesRequest(selector={"class__": "note"})

        assert request.query()["filter"] == "_selector"
        assert "selector" not in request.query()
        assert request.body() == {"selector": {"class__": "note"}}

    def test_doc_ids_go_to_body(self):
        request = ChangesRequest(doc_ids=["a", "b"])

        assert request.query()["filter"] == "_doc_ids"
        assert request.body() == {"doc_ids": ["a", "b"]}


class TestResults:
    """Tests for decoded result types."""

    def test_change_event_revisions(self):
        event = ChangeEvent.model_validate(
            {"seq": "3-x", "id": "a", "changes": [{"rev": "2-b"}], "deleted": True}
        )

        assert event.revisions == ["2-b"]
        assert event.deleted is True
        assert event.doc is None

    def test_delete_response_not_found(self):
        assert DeleteResponse(error="not_found", reason="deleted").not_found
        assert not DeleteResponse(ok=True, id="a", rev="2-b").not_found

    def test_view_result_accessors(self):
        result = ViewResult(rows=[ViewRow(id="a", key=1, value=None), ViewRow(id="b", key=2, value="v")])

        assert result.values == [None, "v"]
        assert result.docs == [None, None]
