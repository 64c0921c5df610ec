import json

import dotenv
import httpx
import pytest

from aicore.errors import *

dotenv.load_dotenv()


def _status_error(status: int, body: dict | str) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://aicore.example.com/v2/completion")
    content = body if isinstance(body, str) else json.dumps(body)
    response = httpx.Response(
        status, content=content, request=request, headers={"x-request-id": "r-9"}
    )
    return httpx.HTTPStatusError("failed", request=request, response=response)


def test_is_error_envelope():
    assert is_error_envelope({"error": {"message": "bad"}})
    assert is_error_envelope({"error": [{"message": "a"}, {"message": "b"}]})
    assert not is_error_envelope({"error": [{"message": "a"}, {"code": 1}]})
    assert not is_error_envelope({"error": "bad"})
    assert not is_error_envelope("bad")


def test_retryable_statuses():
    assert all(is_retryable_status(s) for s in (408, 409, 429, 500, 503, 599))
    assert not any(is_retryable_status(s) for s in (400, 401, 404, 422))


def test_authentication_envelope():
    error = convert_sap_error(
        {"error": {"message": "Unauthorized", "code": 401, "request_id": "abc"}}
    )
    assert isinstance(error, AuthenticationError)
    assert error.status_code == 401
    assert not error.retryable
    assert "Authentication failed." in error.message
    assert "AICORE_AUTH_TOKEN" in error.message
    assert "Request ID: abc" in error.message


def test_not_found_envelope():
    error = convert_sap_error(
        {
            "error": {
                "message": "Deployment: d-123 not found",
                "code": 404,
                "location": "LLM Module",
            }
        }
    )
    assert isinstance(error, NoSuchModelError)
    assert error.model_id == "d-123"
    assert error.category == ErrorCategory.NOT_FOUND


def test_rate_limit_envelope():
    error = convert_sap_error({"error": {"message": "Too many", "code": 429}})
    assert isinstance(error, RateLimitError)
    assert error.retryable
    assert "Rate limit exceeded." in error.message


def test_server_error_envelope():
    error = convert_sap_error({"error": {"message": "Boom", "code": 503}})
    assert isinstance(error, APICallError)
    assert error.retryable
    assert "This is typically a temporary issue." in error.message


def test_validation_envelope_with_location():
    error = convert_sap_error(
        {"error": {"message": "Bad template", "code": 400, "location": "Templating"}}
    )
    assert isinstance(error, ConfigurationError)
    assert error.status_code == 400
    assert not error.retryable
    assert "Error location: Templating" in error.message


def test_list_envelope_uses_first_entry():
    error = convert_sap_error(
        {
            "error": [
                {"message": "first", "code": 429},
                {"message": "second", "code": 500},
            ]
        }
    )
    assert isinstance(error, RateLimitError)
    assert error.message.startswith("first")


def test_invalid_code_becomes_500():
    error = convert_sap_error({"error": {"message": "odd", "code": "E42"}})
    assert error.status_code == 500
    assert error.retryable


def test_integral_float_code_is_accepted():
    error = convert_sap_error({"error": {"message": "Unauthorized", "code": 401.0}})
    assert isinstance(error, AuthenticationError)
    assert error.status_code == 401
    error = convert_sap_error({"error": {"message": "odd", "code": 401.5}})
    assert error.status_code == 500


def test_empty_error_list_is_not_an_envelope():
    assert not is_error_envelope({"error": []})
    message = "Error received from the orchestration service: {\"error\": []}"
    error = convert_to_provider_error(RuntimeError(message), operation="doStream")
    assert isinstance(error, StreamProtocolError)
    assert error.status_code == 500


def test_http_status_error_with_envelope():
    cause = _status_error(400, {"error": {"message": "Invalid params", "code": 400}})
    error = convert_to_provider_error(cause, operation="doGenerate")
    assert isinstance(error, ConfigurationError)
    assert error.response_headers is not None
    assert error.response_headers["x-request-id"] == "r-9"
    assert error.__cause__ is cause


def test_http_status_error_without_envelope():
    error = convert_to_provider_error(_status_error(502, "<html>bad gateway</html>"))
    assert isinstance(error, APICallError)
    assert error.status_code == 502
    assert error.retryable


def test_envelope_embedded_in_message():
    message = 'Error received from the orchestration service: {"error": {"message": "Quota", "code": 429}}'
    error = convert_to_provider_error(RuntimeError(message))
    assert isinstance(error, RateLimitError)


def test_cause_chain_is_unwrapped():
    try:
        try:
            raise ConnectionError("ECONNREFUSED 127.0.0.1:443")
        except ConnectionError as e:
            raise RuntimeError("request failed") from e
    except RuntimeError as e:
        error = convert_to_provider_error(e)
    assert isinstance(error, NetworkError)
    assert error.retryable
    assert error.status_code == 503


@pytest.mark.parametrize(
    "message, cls, status",
    [
        ("Invalid credentials for service key", AuthenticationError, 401),
        ("Request timeout after 30s", NetworkError, 503),
        ("Could not resolve destination.", ConfigurationError, 400),
        ("Failed to resolve deployment: d-1", NoSuchModelError, 404),
        ("Content was filtered by the output filter.", ContentFilterError, 400),
        ("Request failed with status code 429", RateLimitError, 429),
        ("Cannot iterate over a consumed stream.", StreamProtocolError, 500),
        ("Error parsing YAML", ConfigurationError, 400),
        ("Failed to fetch the list of deployments", NetworkError, 503),
    ],
)
def test_message_heuristics(message, cls, status):
    error = convert_to_provider_error(Exception(message))
    assert type(error) is cls
    assert error.status_code == status


def test_httpx_transport_error_is_network_error():
    request = httpx.Request("POST", "https://aicore.example.com")
    error = convert_to_provider_error(httpx.ConnectError("refused", request=request))
    assert isinstance(error, NetworkError)


def test_unrecognized_error_fallback():
    error = convert_to_provider_error(ValueError("weird"), operation="doStream")
    assert type(error) is APICallError
    assert error.message == "SAP AI Core doStream failed: weird"
    assert error.status_code == 500
    assert not error.retryable

    error = convert_to_provider_error(42)
    assert error.message == "SAP AI Core error: Unknown error occurred"


def test_provider_errors_pass_through():
    original = UnsupportedFunctionalityError("audio input")
    assert convert_to_provider_error(original) is original
    assert str(original) == "'audio input' functionality not supported."


def test_extract_model_identifier():
    assert extract_model_identifier("model: gpt-4o is unavailable") == "gpt-4o"
    assert extract_model_identifier("nothing here", "LLM Module") == "LLM"
    assert extract_model_identifier("nothing here") is None
