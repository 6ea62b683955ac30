"""Tests for tradeclient.main — startup configuration checks."""

import pytest

from tradeclient import main
from tradeclient.config import Settings


def make_settings(**kwargs):
    base = dict(user_id="user1", api_base_url="https://backend.test")
    base.update(kwargs)
    return Settings(**base)


class TestCheckSettings:
    def test_valid(self):
        assert main.check_settings(make_settings()) == []

    def test_missing_user(self):
        problems = main.check_settings(make_settings(user_id="  "))
        assert len(problems) == 1
        assert "USER_ID" in problems[0]

    @pytest.mark.parametrize("url", ["backend.test", "ftp://backend.test", "https://"])
    def test_bad_base_url(self, url):
        problems = main.check_settings(make_settings(api_base_url=url))
        assert any("API_BASE_URL" in p for p in problems)

    def test_non_positive_interval(self):
        problems = main.check_settings(make_settings(trades_poll_interval_s=0))
        assert problems == ["TRADES_POLL_INTERVAL_S must be positive"]

    def test_main_exits_before_serving(self, monkeypatch):
        served = []
        monkeypatch.setattr(main, "setup_logging", lambda: None)
        monkeypatch.setattr(main, "settings", make_settings(user_id=""))
        monkeypatch.setattr(main.uvicorn, "run", lambda *a, **kw: served.append(a))
        with pytest.raises(SystemExit) as exc:
            main.main()
        assert exc.value.code == 2
        assert served == []
