from __future__ import annotations

import io
import json

from drg.errors import InvalidInputError, NotFoundError, ServiceError, UnexpectedClientError
from drg.outcome import (
    BatchOutcome,
    SuccessWithJsonData,
    SuccessWithMessage,
    display,
    envelope,
    sanitize_error_text,
)


def _display(result, *, json_output: bool, pretty=None) -> tuple[int, str, str]:
    out = io.StringIO()
    err = io.StringIO()
    rc = display(result, json_output=json_output, stdout=out, stderr=err, pretty=pretty)
    return rc, out.getvalue(), err.getvalue()


def test_message_prints_plain_text() -> None:
    rc, out, err = _display(SuccessWithMessage("Application created"), json_output=False)
    assert rc == 0
    assert out == "Application created\n"
    assert err == ""


def test_message_json_envelope() -> None:
    rc, out, _ = _display(SuccessWithMessage("Device deleted"), json_output=True)
    assert rc == 0
    assert json.loads(out) == {"status": "success", "message": "Device deleted"}


def test_data_uses_pretty_printer_in_text_mode() -> None:
    seen = []
    rc, out, _ = _display(
        SuccessWithJsonData([{"metadata": {"name": "a"}}]),
        json_output=False,
        pretty=lambda data, stream: seen.append(data),
    )
    assert rc == 0
    assert out == ""
    assert seen == [[{"metadata": {"name": "a"}}]]


def test_data_json_mode_prints_raw_document() -> None:
    rc, out, _ = _display(SuccessWithJsonData({"metadata": {"name": "a"}}), json_output=True)
    assert rc == 0
    assert json.loads(out) == {"metadata": {"name": "a"}}


def test_error_goes_to_stderr_with_failure_code() -> None:
    rc, out, err = _display(NotFoundError(), json_output=False)
    assert rc == 1
    assert out == ""
    assert err == "error: The application or device was not found\n"


def test_service_error_envelope_carries_http_status() -> None:
    rc, out, _ = _display(ServiceError("conflict", status_code=409), json_output=True)
    assert rc == 1
    assert json.loads(out) == {"status": "failure", "message": "conflict", "http_status": 409}


def test_local_errors_have_no_http_status() -> None:
    payload = envelope(InvalidInputError("bad label"))
    assert payload == {
        "status": "failure",
        "message": "The operation was not completed because `bad label`",
    }
    assert "http_status" not in envelope(UnexpectedClientError("boom"))


def test_batch_reports_every_entry_and_fails_on_any_error() -> None:
    batch = BatchOutcome()
    batch.add("a.yaml", SuccessWithMessage("Success creating app a"))
    batch.add("b.yaml", InvalidInputError("Deserialization error in b.yaml"))
    batch.add("c.yaml", SuccessWithMessage("Success creating device c"))

    rc, out, err = _display(batch, json_output=False)

    assert rc == 1
    assert out.splitlines() == ["a.yaml: Success creating app a", "c.yaml: Success creating device c"]
    assert "b.yaml: error:" in err
    assert err.strip().endswith("error: 1 of 3 failed")


def test_batch_json_lists_outcomes_in_order() -> None:
    batch = BatchOutcome()
    batch.add("a.yaml", SuccessWithMessage("ok"))
    batch.add("b.yaml", ServiceError("nope", status_code=400))

    rc, out, _ = _display(batch, json_output=True)

    payload = json.loads(out)
    assert rc == 1
    assert payload["status"] == "failure"
    assert payload["message"] == "1 of 2 succeeded"
    assert [item["source"] for item in payload["outcomes"]] == ["a.yaml", "b.yaml"]
    assert payload["outcomes"][1]["http_status"] == 400


def test_empty_batch_succeeds() -> None:
    rc, _, err = _display(BatchOutcome(), json_output=False)
    assert rc == 0
    assert err == ""


def test_sanitize_redacts_credentials() -> None:
    text = "failed with Authorization: Bearer abc.def token=xyz url=https://h/?password=p1"
    redacted = sanitize_error_text(text)
    assert "abc.def" not in redacted
    assert "xyz" not in redacted
    assert "p1" not in redacted
