"""Response verification for lifecycle stages.

Assertion helpers that raise the harness error types instead of bare
``AssertionError`` so the sequencer can report what went wrong.
"""

from __future__ import annotations

from typing import Any

import httpx

from ml_lifecycle.errors import MalformedResponseError, UnexpectedStatusError


def expect_status(
    response: httpx.Response,
    expected_code: int,
    *,
    context: str = "request",
) -> None:
    """Fail unless *response* has status *expected_code*.

    Args:
        response: Response to check.
        expected_code: Required HTTP status code.
        context: Short description of the call, used in the message.

    Raises:
        UnexpectedStatusError: Carrying the observed status code.
    """
    observed = response.status_code
    if observed != expected_code:
        msg = f"Unexpected response received for {context}: {observed} (expected {expected_code})"
        raise UnexpectedStatusError(
            msg,
            observed=observed,
            expected=expected_code,
            diagnostics={"context": context, "body": response.text[:500]},
        )


def read_json(response: httpx.Response) -> Any:
    """Parse the response body as JSON.

    Raises:
        MalformedResponseError: If the body is not valid JSON.
    """
    try:
        return response.json()
    except ValueError as exc:
        msg = f"Response body is not valid JSON: {exc}"
        raise MalformedResponseError(msg, diagnostics={"body": response.text[:200]}) from exc


def read_json_object(response: httpx.Response, *keys: str) -> dict[str, Any]:
    """Parse the body as a JSON object that contains every key in *keys*.

    Raises:
        MalformedResponseError: If the body is not an object or lacks a key.
    """
    body = read_json(response)
    if not isinstance(body, dict):
        msg = f"Expected a JSON object, got {type(body).__name__}"
        raise MalformedResponseError(msg, diagnostics={"body": response.text[:200]})
    missing = [k for k in keys if k not in body]
    if missing:
        msg = f"Response object is missing keys: {missing}"
        raise MalformedResponseError(msg, diagnostics={"keys": sorted(body)})
    return body


def expect_prediction_count(response: httpx.Response, expected_rows: int) -> list[Any]:
    """Check that *response* holds exactly one prediction per input row.

    Args:
        response: Response of a predict call.
        expected_rows: Number of feature rows that were submitted.

    Returns:
        The parsed predictions.

    Raises:
        MalformedResponseError: If the body is not a JSON array of length
            *expected_rows*.
    """
    predictions = read_json(response)
    if not isinstance(predictions, list):
        msg = f"Expected a JSON array of predictions, got {type(predictions).__name__}"
        raise MalformedResponseError(msg, diagnostics={"body": response.text[:200]})
    if len(predictions) != expected_rows:
        msg = f"Expected {expected_rows} predictions, got {len(predictions)}"
        raise MalformedResponseError(
            msg, diagnostics={"expected": expected_rows, "observed": len(predictions)}
        )
    return predictions
