"""
Error Classifier Tests

Covers:
1. Status code extraction (JSON, bracket/standalone, keywords)
2. Video auth priority over generic auth
3. Structured RemoteServiceError classification
4. Never-raise behaviour on malformed input
5. Suggestions and short messages

Run with:
    python -m pytest tests/test_error_classifier.py -v
"""

import pytest

from core.errors import (
    NETWORK_CODE,
    ErrorCategory,
    RemoteServiceError,
    classify,
    extract_status_code,
    short_error_message,
    suggestion_for,
)


class TestStatusCodeExtraction:
    """Code extraction order: JSON, then 3-digit token, then keywords."""

    @pytest.mark.parametrize("code", [400, 401, 429, 503])
    def test_embedded_json_code(self, code):
        message = f'Request failed upstream: {{"error":{{"code":{code},"message":"boom"}}}} (see logs)'
        assert classify(message).code == str(code)

    def test_json_wins_over_other_numbers(self):
        message = 'got 500 from gateway {"error": {"code": 429, "status": "RESOURCE_EXHAUSTED"}}'
        assert extract_status_code(message) == "429"

    def test_bracketed_code(self):
        assert extract_status_code("[503] Service Unavailable") == "503"

    def test_standalone_code(self):
        assert extract_status_code("Request failed with status 404 today") == "404"

    @pytest.mark.parametrize("message,expected", [
        ("Permission denied on resource project", "403"),
        ("API key not valid. Please pass a valid API key.", "403"),
        ("Resource exhausted for this project", "429"),
        ("Bad request: malformed payload", "400"),
        ("Internal server error", "500"),
        ("TypeError: Failed to fetch", NETWORK_CODE),
    ])
    def test_keyword_inference(self, message, expected):
        assert extract_status_code(message) == expected

    def test_no_code(self):
        assert extract_status_code("something odd happened") is None


class TestCategories:
    """Override rules and code mapping."""

    @pytest.mark.parametrize("message", [
        "403 Forbidden: veo auth token expired",
        "[401] auth token rejected",
        '{"error": {"code": 403, "message": "Video access denied"}}',
        "401 Unauthorized",
    ])
    def test_veo_auth_takes_priority(self, message):
        assert classify(message).category == ErrorCategory.VEO_AUTH_FAILURE

    def test_veo_auth_phrase_without_code(self):
        result = classify("Veo authentication failed for this request")
        assert result.category == ErrorCategory.VEO_AUTH_FAILURE

    def test_token_required_message(self):
        result = classify("Veo auth token is required for video generation.")
        assert result.category == ErrorCategory.VEO_AUTH_FAILURE

    @pytest.mark.parametrize("message", [
        "[403] Permission denied: API key was revoked",
        "Permission denied on resource",
        '{"error": {"code": 400, "message": "API key not valid. Please pass a valid API key."}}',
    ])
    def test_auth_invalid(self, message):
        assert classify(message).category == ErrorCategory.AUTH_INVALID

    @pytest.mark.parametrize("message,category", [
        ("[429] Too many requests", ErrorCategory.QUOTA_EXHAUSTED),
        ("[400] Request contains an invalid argument", ErrorCategory.BAD_REQUEST),
        ("[500] Internal error", ErrorCategory.SERVER_UNAVAILABLE),
        ("[503] The model is overloaded", ErrorCategory.SERVER_UNAVAILABLE),
        ("Failed to fetch", ErrorCategory.NETWORK),
        ("something odd happened", ErrorCategory.UNKNOWN),
    ])
    def test_code_mapping(self, message, category):
        assert classify(message).category == category

    def test_exception_input(self):
        result = classify(RuntimeError("[429] quota"))
        assert result.category == ErrorCategory.QUOTA_EXHAUSTED
        assert result.message == "[429] quota"


class TestStructuredErrors:
    """RemoteServiceError is classified from its fields, not its text."""

    def test_video_service_auth_code(self):
        error = RemoteServiceError("Forbidden", code="403", service="video")
        assert classify(error).category == ErrorCategory.VEO_AUTH_FAILURE

    def test_api_key_auth_code(self):
        error = RemoteServiceError("Forbidden", code="403", service="image")
        result = classify(error)
        assert result.category == ErrorCategory.AUTH_INVALID
        assert result.code == "403"

    def test_structured_code_beats_text(self):
        error = RemoteServiceError("mentions 500 in passing", code="429", service="text")
        assert classify(error).category == ErrorCategory.QUOTA_EXHAUSTED

    def test_explicit_category(self):
        error = RemoteServiceError("ConnectError", code=NETWORK_CODE, category=ErrorCategory.NETWORK)
        result = classify(error)
        assert result.category == ErrorCategory.NETWORK
        assert result.code == NETWORK_CODE

    def test_missing_code_falls_back_to_text(self):
        error = RemoteServiceError("[503] overloaded", service="text")
        assert classify(error).category == ErrorCategory.SERVER_UNAVAILABLE


class TestNeverRaises:

    def test_none(self):
        result = classify(None)
        assert result.category == ErrorCategory.UNKNOWN
        assert result.message == "None"

    def test_unprintable_object(self):
        class Unprintable:
            def __str__(self):
                raise ValueError("no")

        result = classify(Unprintable())
        assert result.category == ErrorCategory.UNKNOWN

    def test_dict_input(self):
        result = classify({"error": {"code": 429}})
        assert result.category == ErrorCategory.QUOTA_EXHAUSTED

    def test_exception_without_message(self):
        result = classify(TimeoutError())
        assert result.category == ErrorCategory.UNKNOWN
        assert result.message == "TimeoutError"


class TestSuggestions:

    def test_quota_suggestion(self):
        suggestion = suggestion_for(classify("[429] slow down"))
        assert "wait a minute" in suggestion

    def test_existing_suggestion_kept(self):
        assert suggestion_for(classify("[400] Blocked. Please try a different prompt.")) is None

    def test_unknown_has_no_suggestion(self):
        assert suggestion_for(classify("odd")) is None


class TestShortErrorMessage:

    def test_json_message(self):
        assert short_error_message('{"error": {"code": 403, "message": "API key expired"}}') == "API key expired"

    def test_first_line_only(self):
        assert short_error_message(RuntimeError("first line\nsecond line")) == "first line"

    def test_sdk_prefix_removed(self):
        message = "[GoogleGenerativeAI Error]: model overloaded"
        assert short_error_message(message) == "model overloaded"
