"""Unit tests for validation.py - JSON schema and name validation."""

from validation import (
    validate_provider_schema,
    validate_resource_name,
    validate_spec_against_schema,
)


class TestValidateProviderSchema:
    """Tests for validate_provider_schema function."""

    def test_valid_simple_schema(self):
        """Test validation of a simple valid schema."""
        schema = {
            "type": "object",
            "properties": {
                "tier": {"type": "string"},
                "storage_size_gb": {"type": "integer"},
            },
        }
        is_valid, error = validate_provider_schema(schema)
        assert is_valid is True
        assert error is None

    def test_valid_schema_with_one_of(self):
        """Test validation of schema with oneOf alternatives."""
        schema = {
            "type": "object",
            "oneOf": [{"required": ["value"]}, {"required": ["generate"]}],
            "properties": {
                "value": {"type": "string"},
                "generate": {"const": True},
            },
        }
        is_valid, error = validate_provider_schema(schema)
        assert is_valid is True
        assert error is None

    def test_empty_schema_is_valid(self):
        """Test that empty schema is valid (matches anything)."""
        is_valid, error = validate_provider_schema({})
        assert is_valid is True
        assert error is None

    def test_invalid_schema_bad_type(self):
        """Test that invalid type value is rejected."""
        is_valid, error = validate_provider_schema({"type": "invalid_type"})
        assert is_valid is False
        assert "Invalid schema" in error

    def test_invalid_schema_bad_required(self):
        """Test that a non-list required is rejected."""
        is_valid, error = validate_provider_schema(
            {"type": "object", "required": "tier"}
        )
        assert is_valid is False
        assert error is not None


class TestValidateSpecAgainstSchema:
    """Tests for validate_spec_against_schema function."""

    SCHEMA = {
        "type": "object",
        "required": ["database_version", "tier"],
        "additionalProperties": False,
        "properties": {
            "database_version": {"type": "string"},
            "tier": {"type": "string"},
            "storage_size_gb": {"type": "integer", "minimum": 10},
        },
    }

    def test_valid_spec(self):
        """Test a spec that satisfies the schema."""
        is_valid, error = validate_spec_against_schema(
            {"database_version": "POSTGRES_15", "tier": "db-f1-micro"}, self.SCHEMA
        )
        assert is_valid is True
        assert error is None

    def test_missing_required_field(self):
        """Test that a missing required field is reported at the root."""
        is_valid, error = validate_spec_against_schema({"tier": "x"}, self.SCHEMA)
        assert is_valid is False
        assert "(root)" in error
        assert "database_version" in error

    def test_error_includes_field_path(self):
        """Test that a nested error names its field."""
        is_valid, error = validate_spec_against_schema(
            {"database_version": "POSTGRES_15", "tier": "x", "storage_size_gb": 5},
            self.SCHEMA,
        )
        assert is_valid is False
        assert error.startswith("storage_size_gb:")

    def test_multiple_errors_are_joined(self):
        """Test that every error is reported."""
        is_valid, error = validate_spec_against_schema(
            {"storage_size_gb": "big", "extra": 1}, self.SCHEMA
        )
        assert is_valid is False
        assert error.count(";") >= 2
        assert "extra" in error


class TestValidateResourceName:
    """Tests for validate_resource_name function."""

    def test_valid_names(self):
        for name in ("db", "recipes-db", "a1", "x" * 63):
            is_valid, error = validate_resource_name(name)
            assert is_valid is True, name
            assert error is None

    def test_invalid_names(self):
        for name in ("", "Recipes", "1db", "-db", "db_1", "x" * 64, 42, None):
            is_valid, error = validate_resource_name(name)
            assert is_valid is False, name
            assert "Invalid resource name" in error
