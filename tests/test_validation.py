import pytest

from safe_js_runner import ExecutionRequest, Language, ValidationError, validate_request


def test_missing_language_defaults_to_javascript() -> None:
    req = validate_request({"code": "1 + 1"})
    assert req == ExecutionRequest(code="1 + 1", language=Language.JAVASCRIPT)


def test_accepts_both_language_tags() -> None:
    assert validate_request({"code": "x", "language": "javascript"}).language is Language.JAVASCRIPT
    assert validate_request({"code": "x", "language": "html"}).language is Language.HTML
    assert validate_request({"code": "x", "language": Language.HTML}).language is Language.HTML


def test_unknown_language_is_rejected_not_defaulted() -> None:
    with pytest.raises(ValidationError) as exc:
        validate_request({"code": "print(1)", "language": "python"})
    assert exc.value.field == "language"
    assert "'python'" in str(exc.value)


@pytest.mark.parametrize("language", [None, "JavaScript", "", 1])
def test_language_must_match_exactly(language: object) -> None:
    with pytest.raises(ValidationError, match="language"):
        validate_request({"code": "1", "language": language})


def test_code_is_required() -> None:
    with pytest.raises(ValidationError) as exc:
        validate_request({"language": "javascript"})
    assert exc.value.field == "code"


def test_code_must_be_a_string() -> None:
    with pytest.raises(ValidationError, match="must be a string"):
        validate_request({"code": 42})


def test_request_must_be_a_mapping() -> None:
    with pytest.raises(ValidationError) as exc:
        validate_request(["1 + 1"])  # type: ignore[arg-type]
    assert exc.value.field == "request"


def test_code_is_not_inspected_or_trimmed() -> None:
    code = "  while(true) {}\n<script>alert(1)</script>  "
    assert validate_request({"code": code}).code == code


def test_extra_keys_are_ignored() -> None:
    req = validate_request({"code": "1", "toolCallId": "abc"})
    assert req.code == "1"


def test_validation_error_is_a_value_error() -> None:
    assert issubclass(ValidationError, ValueError)
