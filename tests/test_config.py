from __future__ import annotations

from etsidata.config import DEFAULT_ROOT, Settings


def test_defaults_when_environment_is_empty() -> None:
    s = Settings.from_env({})

    assert s.iotdb_host == "127.0.0.1"
    assert s.iotdb_port == 6667
    assert s.ws_port == 9898
    assert s.identifier_root == DEFAULT_ROOT
    assert s.timeout_s == 1.0


def test_environment_overrides() -> None:
    s = Settings.from_env(
        {
            "IOTDB_HOST": "tsdb",
            "IOTDB_PORT": "6668",
            "IOTDB_USER": "reader",
            "IOTDB_PASSWORD": "secret",
            "WSHOST": "127.0.0.1",
            "WSPORT": "9000",
            "ETSIDATA_ROOT": "root.test",
            "IOTDB_TIMEOUT_MS": "2500",
        }
    )

    assert (s.iotdb_host, s.iotdb_port, s.iotdb_user, s.iotdb_password) == ("tsdb", 6668, "reader", "secret")
    assert (s.ws_host, s.ws_port) == ("127.0.0.1", 9000)
    assert s.identifier_root == "root.test"
    assert s.timeout_s == 2.5


def test_bad_integers_keep_defaults() -> None:
    s = Settings.from_env({"IOTDB_PORT": "sixty", "ETSIDATA_SEND_QUEUE": "0"})

    assert s.iotdb_port == 6667
    assert s.send_queue_size == 1
