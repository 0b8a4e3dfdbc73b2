import pytest

from smb_opsight.config import load_app_config
from smb_opsight.errors import ConfigurationError


def write_config(tmp_path, content: str):
    path = tmp_path / "smb_opsight_config.toml"
    path.write_text(content, encoding="utf-8")
    return path


def test_defaults_apply_to_missing_sections(tmp_path):
    path = write_config(tmp_path, "")

    cfg = load_app_config(str(path))

    assert cfg.database.engine == "sqlite"
    assert cfg.database.path == (tmp_path / "data/db/smb_opsight.sqlite").resolve()
    assert cfg.analytics.default_period_type == "monthly"
    assert cfg.analytics.trend_periods == 6
    assert cfg.analytics.max_workers == 5
    assert cfg.production.delay_multiplier == 1.5
    assert cfg.production.fallback_threshold_hours == 24.0
    assert cfg.finance.expected_monthly_orders == 40
    assert cfg.log_level == "INFO"


def test_values_are_read_and_db_path_is_relative_to_the_file(tmp_path):
    path = write_config(
        tmp_path,
        """
[database]
engine = "sqlite"
path = "shop.sqlite"

[analytics]
default_period_type = "quarterly"
trend_periods = 4
max_workers = 2

[production]
delay_multiplier = 2
fallback_threshold_hours = 12.5

[finance]
expected_monthly_orders = 25

[logging]
level = "debug"
""",
    )

    cfg = load_app_config(str(path))

    assert cfg.database.path == (tmp_path / "shop.sqlite").resolve()
    assert cfg.analytics.default_period_type == "quarterly"
    assert cfg.analytics.trend_periods == 4
    assert cfg.production.delay_multiplier == 2.0
    assert cfg.production.fallback_threshold_hours == 12.5
    assert cfg.finance.expected_monthly_orders == 25
    assert cfg.log_level == "DEBUG"


def test_default_file_is_looked_up_in_the_working_directory(tmp_path, monkeypatch):
    write_config(tmp_path, "[analytics]\ntrend_periods = 3\n")
    monkeypatch.chdir(tmp_path)

    assert load_app_config().analytics.trend_periods == 3


def test_missing_file_raises_file_not_found(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_app_config(str(tmp_path / "nope.toml"))


@pytest.mark.parametrize(
    "content",
    [
        "[analytics\n",
        '[analytics]\ndefault_period_type = "weekly"\n',
        "[analytics]\ntrend_periods = 0\n",
        '[analytics]\nmax_workers = "many"\n',
        "[production]\ndelay_multiplier = -1\n",
        "[finance]\nexpected_monthly_orders = 0\n",
        '[logging]\nlevel = "LOUD"\n',
    ],
)
def test_invalid_values_raise_configuration_error(tmp_path, content):
    path = write_config(tmp_path, content)

    with pytest.raises(ConfigurationError):
        load_app_config(str(path))
