"""Jotform answer extraction and normalization (pure functions, no app)."""
from datetime import datetime

from app.portal.modules.applications.field_mapping import (
    FIELD_MAPPING,
    classify_document,
    extract_document_references,
    extract_field_value,
    format_timestamp,
    map_submission_to_record,
    normalize_date,
)
from app.portal.modules.applications.parsers import Submission


def _submission(answers, **kw):
    return Submission(submission_id=kw.pop("submission_id", "S1"), form_id="F1", answers=answers, **kw)


def test_extract_by_name_substring():
    answers = {"q1_fullName": {"name": "q1_fullName", "answer": "Jane Doe"}}
    assert extract_field_value(answers, FIELD_MAPPING["full_name"]) == "Jane Doe"


def test_exact_key_wins_over_name_match():
    answers = {
        "1": {"name": "fullName", "answer": "From Name"},
        "3": {"name": "something", "answer": "From Key"},
    }
    assert extract_field_value(answers, ["3", "fullName"]) == "From Key"


def test_substring_match_follows_payload_order():
    answers = {
        "a": {"name": "workEmailAddress", "answer": "first@example.com"},
        "b": {"name": "email", "answer": "second@example.com"},
    }
    # Both names contain "email"; the first answer in payload order wins.
    assert extract_field_value(answers, ["email", "emailAddress"]) == "first@example.com"


def test_answer_falls_back_to_text_then_pretty_format():
    assert extract_field_value({"3": {"text": "T"}}, ["3"]) == "T"
    assert extract_field_value({"3": {"answer": "", "prettyFormat": "P"}}, ["3"]) == "P"


def test_empty_answer_keeps_searching():
    answers = {
        "3": {"name": "fullName", "answer": ""},
        "9": {"name": "nameOnCard", "answer": "Card Holder"},
    }
    assert extract_field_value(answers, ["3", "fullName", "name"]) == "Card Holder"


def test_missing_field_is_none():
    assert extract_field_value({"1": {"name": "other", "answer": "x"}}, ["3", "fullName"]) is None


def test_normalize_date_variants():
    assert normalize_date("2024-01-15") == "2024-01-15"
    assert normalize_date("2024-01-15T10:30:00Z") == "2024-01-15"
    assert normalize_date("01/15/2024") == "2024-01-15"
    assert normalize_date("15 January 2024") == "2024-01-15"
    assert normalize_date("sometime soon") == "sometime soon"


def test_format_timestamp():
    assert format_timestamp("2024-01-15 10:30:00") == "2024-01-15T10:30:00"
    assert format_timestamp("2024-01-15T10:30:00+08:00") == "2024-01-15T02:30:00"
    fallback = datetime(2024, 2, 1, 9, 0, 0)
    assert format_timestamp("garbage", default=fallback) == "2024-02-01T09:00:00"
    assert format_timestamp(None, default=fallback) == "2024-02-01T09:00:00"


def test_map_submission_to_record():
    answers = {
        "3": {"name": "fullName", "answer": {"first": "Jane", "last": "Doe"}},
        "4": {"name": "email", "answer": "jane@example.com"},
        "6": {"name": "dateOfBirth", "answer": {"day": "5", "month": "3", "year": "1990"}},
        "30": {"name": "declaration", "answer": "Yes"},
        "32": {"name": "signatureDate", "answer": "03/01/2024"},
    }
    record = map_submission_to_record(_submission(answers, created_at="2024-03-01 08:00:00"))

    assert record["jotform_submission_id"] == "S1"
    assert record["jotform_form_id"] == "F1"
    assert record["application_status"] == "PENDING"
    assert record["kyc_status"] == "PENDING"
    assert record["created_at"] == "2024-03-01T08:00:00"
    assert record["full_name"] == "Jane Doe"
    assert record["email"] == "jane@example.com"
    assert record["date_of_birth"] == "1990-03-05"
    assert record["declaration"] is True
    assert record["signature_date"] == "2024-03-01"
    # Unanswered fields are left out entirely.
    assert "nric" not in record


def test_declaration_coercion():
    for raw, expected in (("Yes", True), ("TRUE", True), ("1", True), ("No", False), ("agreed", False)):
        record = map_submission_to_record(_submission({"30": {"answer": raw}}))
        assert record["declaration"] is expected, raw


def test_classify_document():
    assert classify_document("NRIC Front") == "identity"
    assert classify_document("Proof of Address") == "address"
    assert classify_document("Utility bill") == "address"
    assert classify_document("Bank Statement") == "bank"
    assert classify_document("Signed Agreement") == "agreement"
    assert classify_document("Photo") == "other"
    assert classify_document(None) == "other"


def test_extract_document_references():
    answers = {
        "40": {
            "type": "control_fileupload",
            "name": "bankStatement",
            "answer": ["https://files.example.com/a.pdf", "https://files.example.com/b.pdf"],
        },
        "41": {"type": "control_fileupload", "answer": "https://files.example.com/c.png"},
        "42": {"type": "control_fileupload", "name": "empty", "answer": []},
        "3": {"type": "control_textbox", "name": "fullName", "answer": "Jane"},
    }
    refs = extract_document_references("S1", answers, created_at=datetime(2024, 1, 1))

    assert [r.file_url for r in refs] == [
        "https://files.example.com/a.pdf",
        "https://files.example.com/b.pdf",
        "https://files.example.com/c.png",
    ]
    assert refs[0].document_type == "bank"
    assert refs[0].field_name == "bankStatement"
    assert refs[2].field_name == "field_41"
    assert refs[2].document_type == "other"
    assert refs[0].as_dict()["created_at"] == "2024-01-01T00:00:00"
