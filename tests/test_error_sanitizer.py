"""Tests for error message sanitization."""
import sys

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.syncio.api.error_sanitizer import ErrorSanitizer, get_sanitizer, sanitize_error_message


class TestErrorSanitizer:
    """Secrets never reach HTTP clients."""

    def setup_method(self):
        self.sanitizer = ErrorSanitizer()

    def test_database_url_redacted(self):
        result = self.sanitizer.sanitize("connect to postgresql://syncio:pw@db:5432/syncio failed")
        assert result.sanitized_message == "connect to [DATABASE_URL] failed"
        assert result.was_sanitized

    def test_auth_key_in_json_body_redacted(self):
        message = 'addonCollectionSet rejected {"authKey": "a1b2c3", "type": "AddonCollectionSet"}'
        result = self.sanitizer.sanitize(message)
        assert "a1b2c3" not in result.sanitized_message
        assert "authKey=[REDACTED]" in result.sanitized_message

    def test_auth_key_in_query_string_redacted(self):
        result = self.sanitizer.sanitize("GET /api?authKey=a1b2c3&type=Read failed")
        assert "a1b2c3" not in result.sanitized_message

    def test_api_key_header_redacted(self):
        result = self.sanitizer.sanitize("X-API-Key: hunter2 was rejected")
        assert "hunter2" not in result.sanitized_message

    def test_bearer_token_redacted(self):
        result = self.sanitizer.sanitize("Authorization: Bearer abc.def-ghi")
        assert "abc.def-ghi" not in result.sanitized_message

    def test_hex_token_redacted(self):
        result = self.sanitizer.sanitize("session 0123456789abcdef0123456789abcdef expired")
        assert result.sanitized_message == "session [HEX_STRING] expired"

    def test_file_path_redacted(self):
        result = self.sanitizer.sanitize("error in /root/app/src/syncio/client.py line 3")
        assert "/root/app" not in result.sanitized_message
        assert "[FILE_PATH]" in result.sanitized_message

    def test_plain_message_untouched(self):
        result = self.sanitizer.sanitize("Group 'family' not found")
        assert result.sanitized_message == "Group 'family' not found"
        assert not result.was_sanitized
        assert self.sanitizer.is_safe("Group 'family' not found")

    def test_empty_message(self):
        assert self.sanitizer.sanitize("").sanitized_message == "An error occurred"

    def test_long_message_truncated(self):
        result = self.sanitizer.sanitize("word " * 300)
        assert result.sanitized_message.endswith("[TRUNCATED]")
        assert len(result.sanitized_message) <= 501

    def test_error_type_prefix(self):
        result = self.sanitizer.sanitize("upstream down", error_type="Remote error")
        assert result.sanitized_message == "Remote error: upstream down"

    def test_custom_patterns(self):
        sanitizer = ErrorSanitizer(patterns=[(r"secret-\d+", "[X]")])
        assert sanitizer.sanitize("id secret-42").sanitized_message == "id [X]"


class TestModuleHelpers:
    def test_shared_instance(self):
        assert get_sanitizer() is get_sanitizer()

    def test_sanitize_error_message(self):
        assert sanitize_error_message("password=abc") == "password=[REDACTED]"
