import pytest

from cv_api.config import LOG_LEVELS, _to_choice, _to_int, resolve_worker_count


@pytest.mark.unit
def test_resolve_worker_count_prefers_explicit_override() -> None:
    assert resolve_worker_count("development", override=4, cpu_count=8) == 4
    assert resolve_worker_count("production", override=3, cpu_count=8) == 3


@pytest.mark.unit
def test_resolve_worker_count_uses_single_worker_in_development() -> None:
    assert resolve_worker_count("development", cpu_count=16) == 1


@pytest.mark.unit
def test_resolve_worker_count_uses_cpu_count_in_production() -> None:
    assert resolve_worker_count("production", cpu_count=6) == 6
    assert resolve_worker_count("production", cpu_count=None) == 1


@pytest.mark.unit
def test_env_parsers_fall_back_on_invalid_values() -> None:
    assert _to_int("abc", 10000) == 10000
    assert _to_int("5", 500, minimum=10) == 500
    assert _to_int(" 250 ", 500, minimum=10) == 250
    assert _to_choice("FORK", ("spawn", "fork"), "spawn") == "fork"
    assert _to_choice("thread", ("spawn", "fork"), "spawn") == "spawn"


@pytest.mark.unit
def test_invalid_log_level_falls_back_to_info() -> None:
    assert _to_choice("verbose", LOG_LEVELS, "info") == "info"
    assert _to_choice("WARNING", LOG_LEVELS, "info") == "warning"
