import logging

from pharmaqms.config import AppConfig, configure_logging, load_config, parse_config


def test_defaults_when_file_missing(tmp_path):
    config = load_config(str(tmp_path / "missing.yaml"))
    assert config == AppConfig()
    assert [u.username for u in config.users] == ["admin", "analyst"]


def test_yaml_sections_override_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "app:\n  title: Site QMS\n  version: 2.1\n"
        "storage:\n  backend: session\n"
        "audit:\n  max_entries: 100\n"
        "ai:\n  enabled: false\n"
        "logging:\n  level: debug\n"
        "users:\n  - username: qa\n    full_name: QA Lead\n    role: Admin\n",
        encoding="utf-8",
    )
    config = load_config(str(path))
    assert config.title == "Site QMS"
    assert config.version == "2.1"
    assert config.storage.backend == "session"
    assert config.storage.directory == AppConfig().storage.directory
    assert config.audit_max_entries == 100
    assert config.notifications_max_entries == 50
    assert config.ai.enabled is False
    assert config.log_level == "DEBUG"
    assert config.users[0].is_admin


def test_malformed_sections_fall_back():
    config = parse_config({"storage": "file", "ipqc": None})
    assert config.storage.backend == "file"
    assert config.ipqc_max_entries == 500


def test_configure_logging_maps_level_names(monkeypatch):
    seen = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: seen.append(kwargs["level"]))
    configure_logging("debug")
    configure_logging("chatty")
    assert seen == [logging.DEBUG, logging.INFO]
