"""Tests for response verification helpers."""

from __future__ import annotations

from hypothesis import given, settings, strategies as st
import httpx
from ml_lifecycle.errors import MalformedResponseError, UnexpectedStatusError
from ml_lifecycle.verifier import (
    expect_prediction_count,
    expect_status,
    read_json,
    read_json_object,
)
import pytest


# ===========================================================================
# expect_status
# ===========================================================================


@pytest.mark.unit
class TestExpectStatus:
    def test_matching_status_passes(self) -> None:
        expect_status(httpx.Response(200), 200)

    def test_mismatch_raises_with_observed_code(self) -> None:
        with pytest.raises(UnexpectedStatusError) as exc_info:
            expect_status(httpx.Response(500, text="oops"), 200, context="create project")
        err = exc_info.value
        assert err.observed == 500
        assert err.expected == 200
        assert err.diagnostics["context"] == "create project"
        assert "500" in str(err)

    def test_other_success_codes_do_not_match(self) -> None:
        """Only the exact expected code is accepted."""
        with pytest.raises(UnexpectedStatusError):
            expect_status(httpx.Response(201), 200)


# ===========================================================================
# JSON parsing
# ===========================================================================


@pytest.mark.unit
class TestReadJson:
    def test_reads_object(self) -> None:
        body = read_json_object(httpx.Response(200, json={"id": 3, "status": "Complete"}), "id")
        assert body["id"] == 3

    def test_missing_key_raises(self) -> None:
        with pytest.raises(MalformedResponseError):
            read_json_object(httpx.Response(200, json={"name": "m"}), "id")

    def test_non_object_raises(self) -> None:
        with pytest.raises(MalformedResponseError):
            read_json_object(httpx.Response(200, json=[1, 2]))

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(MalformedResponseError):
            read_json(httpx.Response(200, text="<html>"))

    def test_empty_body_raises(self) -> None:
        with pytest.raises(MalformedResponseError, match="not valid JSON"):
            read_json(httpx.Response(200))

    def test_undecodable_bytes_raise(self) -> None:
        with pytest.raises(MalformedResponseError) as exc_info:
            read_json(httpx.Response(200, content=b"\x80\x81\x82\x83\x84"))
        assert "body" in exc_info.value.diagnostics

    def test_reads_raw_utf8_body(self) -> None:
        response = httpx.Response(200, content='{"name": "Yacht é"}'.encode())
        assert read_json(response) == {"name": "Yacht é"}


# ===========================================================================
# expect_prediction_count
# ===========================================================================


@pytest.mark.unit
class TestExpectPredictionCount:
    def test_two_row_payload_yields_two_predictions(self) -> None:
        predictions = expect_prediction_count(httpx.Response(200, json=[0.4, 3.1]), 2)
        assert predictions == [0.4, 3.1]

    def test_wrong_length_raises(self) -> None:
        with pytest.raises(MalformedResponseError) as exc_info:
            expect_prediction_count(httpx.Response(200, json=[0.4]), 2)
        assert exc_info.value.diagnostics == {"expected": 2, "observed": 1}

    def test_object_body_raises(self) -> None:
        with pytest.raises(MalformedResponseError):
            expect_prediction_count(httpx.Response(200, json={"predictions": [1, 2]}), 2)

    def test_non_json_raises(self) -> None:
        with pytest.raises(MalformedResponseError):
            expect_prediction_count(httpx.Response(200, text="1,2"), 2)

    @given(
        predictions=st.lists(st.floats(allow_nan=False, allow_infinity=False), max_size=20),
        expected=st.integers(min_value=0, max_value=20),
    )
    @settings(max_examples=50)
    def test_accepts_iff_length_matches(self, predictions: list[float], expected: int) -> None:
        """Property: a prediction array passes exactly when its length matches."""
        response = httpx.Response(200, json=predictions)
        if len(predictions) == expected:
            assert expect_prediction_count(response, expected) == predictions
        else:
            with pytest.raises(MalformedResponseError):
                expect_prediction_count(response, expected)
