from evbus.mqtt_settings import MQTTSettings, create_host_settings, create_socket_settings


def test_socket_settings_use_socket():
    settings = create_socket_settings("/tmp/mqtt.sock", "everest/", "ext/")
    assert settings.uses_socket() is True
    assert settings.broker_socket_path == "/tmp/mqtt.sock"
    assert settings.everest_prefix == "everest/"
    assert settings.external_prefix == "ext/"


def test_host_settings_do_not_use_socket():
    settings = create_host_settings("localhost", 1883, "everest/", "")
    assert settings.uses_socket() is False
    assert settings.broker_host == "localhost"
    assert settings.broker_port == 1883
    assert settings.external_prefix == ""


def test_default_settings_do_not_use_socket():
    assert MQTTSettings().uses_socket() is False


def test_empty_socket_path_means_tcp():
    settings = create_socket_settings("", "everest/", "")
    assert settings.uses_socket() is False