import pytest

from models import ProxyConfig


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_config():
    """构造 ProxyConfig，使用配置文件里的键名，可以按需覆盖。"""
    def _make(**overrides) -> ProxyConfig:
        data = {
            "expiration": 60000,
            "maxEntries": 10,
            "maxSize": 10000,
            "ip_proxy": "127.0.0.1",
            "port_proxy": 8080,
            "nom_server": "127.0.0.1",
            "port_server": 8000,
            "protocole": "http://",
        }
        data.update(overrides)
        return ProxyConfig.model_validate(data)
    return _make
