"""Unit tests for configuration resolution."""

# pylint: disable=redefined-outer-name

import logging

import pytest

from sitehost.bootstrap.config import (
    FIELDS,
    ConfigFileError,
    Configuration,
    InvalidFieldValue,
    RequiredFieldMissing,
    Tier,
    field_tier,
    find_config_file,
    load_config_file,
    resolve_configuration,
)


def _ignore_level(_level):
    return None


def _resolve(config_dir, environ=None, apply_level=_ignore_level):
    return resolve_configuration([config_dir], environ or {}, apply_level)


def _unset_events(records):
    return {
        record.field: record for record in records if getattr(record, "event", None) == "config_field_unset"
    }


# field, value in the file, conflicting environment value, attribute,
# parsed file value, parsed environment value
FIELD_SOURCES = [
    ("Production", "false", "true", "production", False, True),
    ("DevPort", "9000", "7000", "dev_port", 9000, 7000),
    ("CertFile", "/file/cert.pem", "/env/cert.pem", "cert_file", "/file/cert.pem", "/env/cert.pem"),
    ("KeyFile", "/file/key.pem", "/env/key.pem", "key_file", "/file/key.pem", "/env/key.pem"),
    ("ReadTimeout", "11", "21", "read_timeout", 11, 21),
    ("WriteTimeout", "12", "22", "write_timeout", 12, 22),
    ("IdleTimeout", "13", "23", "idle_timeout", 13, 23),
    ("LogLevel", "info", "error", "log_level", "INFO", "ERROR"),
    ("FilesRoot", "/srv/file-site", "/srv/env-site", "files_root", "/srv/file-site", "/srv/env-site"),
]


def _environment_for(field, value):
    environ = {field.upper(): value}
    if field == "Production":
        environ.update(CERTFILE="/env/cert.pem", KEYFILE="/env/key.pem")
    return environ


@pytest.fixture
def config_dir(tmp_path):
    """Empty directory searched for config.yaml."""
    directory = tmp_path / "conf"
    directory.mkdir()
    return directory


class TestDefaults:
    """Resolution with nothing supplied."""

    def test_no_file_and_empty_environment_uses_defaults(self, config_dir):
        """Every field falls back to its documented default."""
        config = _resolve(config_dir)
        assert config == Configuration()
        assert config.production is False
        assert config.dev_port == 8080
        assert config.read_timeout == 5
        assert config.write_timeout == 5
        assert config.idle_timeout == 120
        assert config.log_level == "DEBUG"
        assert config.files_root == "./web"

    def test_listen_port_follows_production(self):
        """Development listens on DevPort, production on 443."""
        assert Configuration(dev_port=9000).listen_port == 9000
        assert Configuration(production=True, dev_port=9000).listen_port == 443

    def test_missing_file_is_logged(self, config_dir, caplog):
        """Absence of a config file is informational only."""
        caplog.set_level(logging.DEBUG, logger="sitehost")
        _resolve(config_dir)
        events = [getattr(record, "event", None) for record in caplog.records]
        assert "config_file_missing" in events


class TestPrecedence:
    """File beats environment beats default."""

    def test_file_value_wins_over_environment(self, config_dir):
        """A key present in the file shadows the environment."""
        (config_dir / "config.yaml").write_text("devport: 9000\n")
        config = _resolve(config_dir, {"DEVPORT": "7000"})
        assert config.dev_port == 9000

    def test_every_field_is_covered(self):
        """The precedence table lists each configuration field once."""
        assert sorted(row[0] for row in FIELD_SOURCES) == sorted(spec.name for spec in FIELDS)

    @pytest.mark.parametrize(
        "field, file_value, env_value, attribute, from_file, _from_env", FIELD_SOURCES
    )
    def test_file_beats_environment_for_each_field(
        self, config_dir, field, file_value, env_value, attribute, from_file, _from_env
    ):
        """Whichever field it is, the file value shadows the environment."""
        (config_dir / "config.yaml").write_text(f"{field}: {file_value}\n")
        config = _resolve(config_dir, _environment_for(field, env_value))
        assert getattr(config, attribute) == from_file

    @pytest.mark.parametrize(
        "field, _file_value, env_value, attribute, _from_file, from_env", FIELD_SOURCES
    )
    def test_environment_beats_default_for_each_field(
        self, config_dir, field, _file_value, env_value, attribute, _from_file, from_env
    ):
        """Without a file the environment value replaces the default."""
        config = _resolve(config_dir, _environment_for(field, env_value))
        assert getattr(config, attribute) == from_env
        assert getattr(Configuration(), attribute) != from_env

    def test_environment_used_when_file_lacks_key(self, config_dir):
        """Fields absent from the file come from the environment."""
        (config_dir / "config.yaml").write_text("devport: 9000\n")
        config = _resolve(config_dir, {"READTIMEOUT": "30", "FilesRoot": "/srv/site"})
        assert config.dev_port == 9000
        assert config.read_timeout == 30
        assert config.files_root == "/srv/site"

    def test_file_keys_are_case_insensitive(self, config_dir):
        """YAML keys match field names regardless of case."""
        (config_dir / "config.yaml").write_text("DevPort: 9001\nLogLevel: info\n")
        config = _resolve(config_dir)
        assert config.dev_port == 9001
        assert config.log_level == "INFO"

    def test_yaml_null_counts_as_unset(self, config_dir):
        """An empty YAML value defers to the environment."""
        (config_dir / "config.yaml").write_text("devport:\n")
        config = _resolve(config_dir, {"DEVPORT": "7100"})
        assert config.dev_port == 7100

    def test_empty_environment_value_counts_as_unset(self, config_dir):
        """An empty environment variable leaves the default in place."""
        config = _resolve(config_dir, {"DEVPORT": ""})
        assert config.dev_port == 8080

    def test_yml_extension_is_found(self, config_dir):
        """config.yml is accepted when config.yaml is absent."""
        (config_dir / "config.yml").write_text("idletimeout: 60\n")
        assert _resolve(config_dir).idle_timeout == 60

    def test_first_search_path_wins(self, tmp_path):
        """Directories are searched in order and the first file is used."""
        first = tmp_path / "first"
        second = tmp_path / "second"
        first.mkdir()
        second.mkdir()
        (first / "config.yaml").write_text("devport: 1111\n")
        (second / "config.yaml").write_text("devport: 2222\n")
        assert find_config_file([first, second]) == first / "config.yaml"
        config = resolve_configuration([first, second], {}, _ignore_level)
        assert config.dev_port == 1111

    def test_boolean_spellings(self, config_dir):
        """Production accepts the usual boolean spellings."""
        config = _resolve(
            config_dir,
            {"PRODUCTION": "yes", "CERTFILE": "/tls/cert.pem", "KEYFILE": "/tls/key.pem"},
        )
        assert config.production is True

    def test_zero_timeout_is_accepted(self, config_dir):
        """Zero disables a timeout ceiling."""
        (config_dir / "config.yaml").write_text("writetimeout: 0\n")
        assert _resolve(config_dir).write_timeout == 0


class TestRequiredness:
    """Tier enforcement and its logging."""

    def test_production_without_certificate_fails(self, config_dir):
        """Certificate paths become required once production is enabled."""
        (config_dir / "config.yaml").write_text("production: true\n")
        with pytest.raises(RequiredFieldMissing) as excinfo:
            _resolve(config_dir)
        assert excinfo.value.field == "CertFile"
        assert "CertFile" in str(excinfo.value)

    def test_production_without_key_fails(self, config_dir):
        """KeyFile is required alongside CertFile."""
        (config_dir / "config.yaml").write_text("production: true\ncertfile: /tls/cert.pem\n")
        with pytest.raises(RequiredFieldMissing) as excinfo:
            _resolve(config_dir)
        assert excinfo.value.field == "KeyFile"

    def test_production_with_material_resolves(self, config_dir):
        """A complete production configuration listens on 443."""
        (config_dir / "config.yaml").write_text(
            "production: true\ncertfile: /tls/cert.pem\nkeyfile: /tls/key.pem\n"
        )
        config = _resolve(config_dir)
        assert config.production is True
        assert config.listen_port == 443

    def test_field_tier_table(self):
        """Production warns, everything else is informational in development."""
        assert field_tier("Production", False) is Tier.OPTIONAL_WARN
        assert field_tier("DevPort", False) is Tier.OPTIONAL_INFO
        assert field_tier("CertFile", False) is Tier.OPTIONAL_INFO
        assert field_tier("CertFile", True) is Tier.REQUIRED
        assert field_tier("KeyFile", True) is Tier.REQUIRED
        assert field_tier("ReadTimeout", True) is Tier.OPTIONAL_INFO

    def test_unset_fields_logged_by_tier(self, config_dir, caplog):
        """Unset Production is a warning; other unset fields are info."""
        caplog.set_level(logging.DEBUG, logger="sitehost")
        _resolve(config_dir)
        unset = _unset_events(caplog.records)
        assert unset["Production"].levelno == logging.WARNING
        assert unset["Production"].tier == "optional-warn"
        assert unset["DevPort"].levelno == logging.INFO
        assert unset["FilesRoot"].levelno == logging.INFO

    def test_supplied_fields_are_not_reported(self, config_dir, caplog):
        """Only fields left to their defaults are reported."""
        caplog.set_level(logging.DEBUG, logger="sitehost")
        _resolve(config_dir, {"DEVPORT": "9000", "PRODUCTION": "false"})
        unset = _unset_events(caplog.records)
        assert "DevPort" not in unset
        assert "Production" not in unset
        assert "IdleTimeout" in unset

    def test_unknown_key_warns(self, config_dir, caplog):
        """Unrecognized keys in the file are reported and ignored."""
        caplog.set_level(logging.DEBUG, logger="sitehost")
        (config_dir / "config.yaml").write_text("devport: 9000\nthemecolor: blue\n")
        _resolve(config_dir)
        unknown = [
            record for record in caplog.records if getattr(record, "event", None) == "config_key_unknown"
        ]
        assert [record.field for record in unknown] == ["themecolor"]


class TestLogLevelOrdering:
    """The resolved log level governs the messages logged after it."""

    def test_level_applied_before_resolution_messages(self, config_dir, caplog):
        """apply_level runs before the file-loaded and unset-field messages."""
        caplog.set_level(logging.DEBUG, logger="sitehost")
        (config_dir / "config.yaml").write_text("loglevel: warn\n")
        seen = []

        def record_level(level):
            seen.append((level, len(caplog.records)))

        _resolve(config_dir, apply_level=record_level)
        assert len(seen) == 1
        level, records_before = seen[0]
        assert level == "WARNING"
        later_events = {getattr(record, "event", None) for record in caplog.records[records_before:]}
        assert "config_file_loaded" in later_events
        assert "config_field_unset" in later_events

    def test_configured_level_suppresses_info(self, config_dir, caplog):
        """With LogLevel warn only warning-tier messages survive."""
        caplog.set_level(logging.DEBUG, logger="sitehost")
        (config_dir / "config.yaml").write_text("loglevel: warn\n")
        resolve_configuration([config_dir], {})
        unset = _unset_events(caplog.records)
        assert set(unset) == {"Production"}
        assert logging.getLogger("sitehost").level == logging.WARNING


class TestInvalidInput:
    """Malformed files and values are hard errors."""

    def test_unparseable_yaml(self, config_dir):
        """A syntactically broken file is reported with its path."""
        path = config_dir / "config.yaml"
        path.write_text("devport: [9000\n")
        with pytest.raises(ConfigFileError) as excinfo:
            _resolve(config_dir)
        assert excinfo.value.path == path

    def test_non_mapping_top_level(self, config_dir):
        """The file must contain a mapping."""
        path = config_dir / "config.yaml"
        path.write_text("- devport\n- 9000\n")
        with pytest.raises(ConfigFileError):
            load_config_file(path)

    def test_empty_file_is_allowed(self, config_dir):
        """An empty file behaves like an absent one."""
        (config_dir / "config.yaml").write_text("")
        assert _resolve(config_dir) == Configuration()

    def test_non_numeric_port(self, config_dir):
        """Values that cannot be coerced name the field and source."""
        with pytest.raises(InvalidFieldValue) as excinfo:
            _resolve(config_dir, {"DEVPORT": "eighty"})
        assert excinfo.value.field == "DevPort"
        assert excinfo.value.source == "environment"

    def test_port_out_of_range(self, config_dir):
        """Ports outside 1..65535 are rejected."""
        (config_dir / "config.yaml").write_text("devport: 70000\n")
        with pytest.raises(InvalidFieldValue) as excinfo:
            _resolve(config_dir)
        assert excinfo.value.source == "file"

    def test_negative_timeout(self, config_dir):
        """Timeouts cannot be negative."""
        with pytest.raises(InvalidFieldValue):
            _resolve(config_dir, {"IDLETIMEOUT": "-1"})

    def test_unknown_log_level(self, config_dir):
        """Unknown level names are rejected."""
        with pytest.raises(InvalidFieldValue):
            _resolve(config_dir, {"LOGLEVEL": "chatty"})

    def test_invalid_boolean(self, config_dir):
        """Production must be a recognizable boolean."""
        (config_dir / "config.yaml").write_text("production: maybe\n")
        with pytest.raises(InvalidFieldValue):
            _resolve(config_dir)
