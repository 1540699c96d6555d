"""
Tests for configuration loading

Covers:
- Config path resolution (explicit > CONFIG_PATH > default)
- Required sections and fields
- Governance weight sum tolerance
- Whitelisted environment overrides
- Error wrapping for missing files and bad YAML
"""

import pytest

from governance_collector.config_loader import (
    DEFAULT_CONFIG_PATH,
    ConfigurationError,
    apply_env_overrides,
    load_config,
    resolve_config_path,
    validate_config,
    validate_schedule,
    validate_weights,
)


class TestResolveConfigPath:
    def test_explicit_path_wins(self):
        path = resolve_config_path("/tmp/explicit.yml", {"CONFIG_PATH": "/tmp/env.yml"})
        assert str(path) == "/tmp/explicit.yml"

    def test_env_path_used_without_explicit(self):
        assert str(resolve_config_path(None, {"CONFIG_PATH": "/tmp/env.yml"})) == "/tmp/env.yml"

    def test_default_path(self):
        assert str(resolve_config_path(None, {})) == DEFAULT_CONFIG_PATH


class TestLoadConfig:
    def test_load_valid_file(self, sample_config, write_config):
        path = write_config(sample_config)

        config = load_config(path, environ={})

        assert config["database"]["path"] == "/app/data/governance.db"
        assert config["api"]["port"] == 3001
        assert set(config) >= {"collection", "database", "api", "postman", "governance", "logging"}

    def test_config_path_from_environment(self, sample_config, write_config):
        path = write_config(sample_config, name="from-env.yml")

        config = load_config(environ={"CONFIG_PATH": str(path)})

        assert config["collection"]["schedule"] == "0 */6 * * *"

    def test_missing_file_raises(self, tmp_path):
        missing = tmp_path / "nope.yml"

        with pytest.raises(ConfigurationError, match="Failed to load configuration") as exc_info:
            load_config(missing, environ={})

        assert str(missing) in str(exc_info.value)

    def test_invalid_yaml_raises_with_cause(self, write_config):
        path = write_config("collection: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Failed to load configuration") as exc_info:
            load_config(path, environ={})

        assert exc_info.value.__cause__ is not None

    def test_validation_error_is_wrapped(self, sample_config, write_config):
        del sample_config["api"]
        path = write_config(sample_config)

        with pytest.raises(ConfigurationError, match="Missing required configuration section: api"):
            load_config(path, environ={})

    def test_overrides_applied_after_load(self, sample_config, write_config):
        path = write_config(sample_config)

        config = load_config(path, environ={"API_PORT": "8080", "LOG_LEVEL": "DEBUG"})

        assert config["api"]["port"] == 8080
        assert config["logging"]["level"] == "DEBUG"

    def test_seconds_schedule_override_accepted(self, sample_config, write_config):
        path = write_config(sample_config)

        config = load_config(path, environ={"COLLECTION_SCHEDULE": "0 0 */6 * * *"})

        assert config["collection"]["schedule"] == "0 0 */6 * * *"

    def test_invalid_schedule_override_rejected(self, sample_config, write_config):
        path = write_config(sample_config)

        with pytest.raises(ConfigurationError, match="Invalid cron schedule: hourly"):
            load_config(path, environ={"COLLECTION_SCHEDULE": "hourly"})


class TestValidateConfig:
    def test_valid_config_passes(self, sample_config):
        validate_config(sample_config)

    @pytest.mark.parametrize("section", ["collection", "database", "api", "postman", "governance", "logging"])
    def test_each_section_required(self, sample_config, section):
        del sample_config[section]

        with pytest.raises(ConfigurationError, match=f"Missing required configuration section: {section}"):
            validate_config(sample_config)

    def test_first_missing_section_reported(self, sample_config):
        del sample_config["database"]
        del sample_config["logging"]

        with pytest.raises(ConfigurationError, match="section: database"):
            validate_config(sample_config)

    def test_empty_section_rejected(self, sample_config):
        sample_config["postman"] = None

        with pytest.raises(ConfigurationError, match="section: postman"):
            validate_config(sample_config)

    def test_schedule_required(self, sample_config):
        del sample_config["collection"]["schedule"]

        with pytest.raises(ConfigurationError, match="Collection schedule is required"):
            validate_config(sample_config)

    def test_database_path_required(self, sample_config):
        sample_config["database"]["path"] = ""

        with pytest.raises(ConfigurationError, match="Database path is required"):
            validate_config(sample_config)

    def test_api_port_required(self, sample_config):
        del sample_config["api"]["port"]

        with pytest.raises(ConfigurationError, match="API port is required"):
            validate_config(sample_config)

    def test_schedule_must_have_five_fields(self, sample_config):
        sample_config["collection"]["schedule"] = "0 */6 * *"

        with pytest.raises(ConfigurationError, match="Invalid cron schedule"):
            validate_config(sample_config)

    def test_six_field_schedule_accepted(self, sample_config):
        sample_config["collection"]["schedule"] = "0 0 */6 * * *"

        validate_config(sample_config)

    def test_non_mapping_config_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_config(["not", "a", "mapping"])


class TestValidateSchedule:
    @pytest.mark.parametrize("schedule", ["0 */6 * * *", "30 0 */6 * * 1-5"])
    def test_five_and_six_fields(self, schedule):
        validate_schedule(schedule)

    @pytest.mark.parametrize("schedule", ["0 */6 * *", "0 0 0 */6 * * *", 15])
    def test_other_shapes_rejected(self, schedule):
        with pytest.raises(ConfigurationError, match="Invalid cron schedule"):
            validate_schedule(schedule)


class TestValidateWeights:
    def test_exact_sum(self):
        assert validate_weights({"documentation": 0.3, "testing": 0.25, "monitoring": 0.25, "organization": 0.2}) == (
            pytest.approx(1.0)
        )

    @pytest.mark.parametrize("organization", [0.199, 0.201])
    def test_sum_within_tolerance_accepted(self, organization):
        validate_weights({"documentation": 0.3, "testing": 0.25, "monitoring": 0.25, "organization": organization})

    def test_sum_outside_tolerance_rejected(self):
        with pytest.raises(ConfigurationError, match="must sum to 1.0, got 0.95"):
            validate_weights({"documentation": 0.3, "testing": 0.25, "monitoring": 0.25, "organization": 0.15})

    def test_missing_weights_rejected(self):
        with pytest.raises(ConfigurationError, match="weights are required"):
            validate_weights(None)

    def test_non_numeric_weight_rejected(self):
        with pytest.raises(ConfigurationError, match="must be a number"):
            validate_weights({"documentation": "0.5", "testing": 0.5})


class TestApplyEnvOverrides:
    def test_all_whitelisted_overrides(self, sample_config):
        environ = {
            "COLLECTION_SCHEDULE": "*/5 * * * *",
            "DATABASE_PATH": "/tmp/g.db",
            "API_PORT": "8080",
            "LOG_LEVEL": "DEBUG",
            "POSTMAN_RATE_LIMIT": "60",
        }

        config = apply_env_overrides(sample_config, environ)

        assert config["collection"]["schedule"] == "*/5 * * * *"
        assert config["database"]["path"] == "/tmp/g.db"
        assert config["api"]["port"] == 8080
        assert config["logging"]["level"] == "DEBUG"
        assert config["postman"]["rate_limit"]["requests_per_minute"] == 60

    def test_input_not_mutated(self, sample_config):
        apply_env_overrides(sample_config, {"API_PORT": "9999"})

        assert sample_config["api"]["port"] == 3001

    def test_unlisted_variables_ignored(self, sample_config):
        config = apply_env_overrides(sample_config, {"POSTMAN_BASE_URL": "https://evil.test", "PORT": "1"})

        assert config == sample_config

    def test_empty_values_ignored(self, sample_config):
        config = apply_env_overrides(sample_config, {"API_PORT": "", "DATABASE_PATH": ""})

        assert config["api"]["port"] == 3001
        assert config["database"]["path"] == "/app/data/governance.db"

    def test_non_integer_override_rejected(self, sample_config):
        with pytest.raises(ConfigurationError, match="API_PORT must be an integer"):
            apply_env_overrides(sample_config, {"API_PORT": "eighty"})

    def test_missing_rate_limit_section_created(self, sample_config):
        del sample_config["postman"]["rate_limit"]

        config = apply_env_overrides(sample_config, {"POSTMAN_RATE_LIMIT": "30"})

        assert config["postman"]["rate_limit"] == {"requests_per_minute": 30}
