import pytest
from fastapi import FastAPI

from config import Settings


def test_module_app_is_servable():
    import main

    assert isinstance(main.app, FastAPI)
    assert main.app.state.settings.database_name


@pytest.mark.parametrize("value", ["100", "120", "-5"])
def test_attendance_target_out_of_range(monkeypatch, value):
    monkeypatch.setenv("ATTENDANCE_TARGET", value)
    with pytest.raises(ValueError, match="ATTENDANCE_TARGET"):
        Settings()


def test_attendance_target_from_env(monkeypatch):
    monkeypatch.setenv("ATTENDANCE_TARGET", "80")
    assert Settings().attendance_target == 80.0
