from netattach.config import DEFAULT_PERMANENT_ERROR_MARKERS, ExecutorConfig, ResourceClass, Settings


def test_settings_defaults() -> None:
    config = Settings()

    assert config.retry_attempts == 4
    assert config.retry_backoff_base == 1.0
    assert config.permanent_error_markers == DEFAULT_PERMANENT_ERROR_MARKERS
    assert config.permanent_error_markers is not DEFAULT_PERMANENT_ERROR_MARKERS


def test_settings_env_prefix(monkeypatch) -> None:
    monkeypatch.setenv("NETATTACH_RETRY_ATTEMPTS", "7")
    monkeypatch.setenv("NETATTACH_BAREMETAL_INTERFACE_TIMEOUT", "60")
    monkeypatch.setenv("NETATTACH_LOG_FORMAT", "text")

    config = Settings()

    assert config.retry_attempts == 7
    assert config.baremetal_interface_timeout == 60.0
    assert config.log_format == "text"


def test_executor_config_from_settings() -> None:
    source = Settings(
        instance_interface_timeout=10,
        baremetal_interface_timeout=20,
        reserved_fixed_ip_timeout=30,
        task_poll_interval=0.5,
        retry_attempts=2,
    )

    config = ExecutorConfig.from_settings(source)

    assert config.timeout_for(ResourceClass.INSTANCE) == 10
    assert config.timeout_for(ResourceClass.BAREMETAL) == 20
    assert config.timeout_for(ResourceClass.RESERVED_FIXED_IP) == 30
    assert config.poll_interval == 0.5
    assert config.retry_attempts == 2


def test_timeout_falls_back_to_instance() -> None:
    config = ExecutorConfig(timeouts={ResourceClass.INSTANCE: 5.0})

    assert config.timeout_for(ResourceClass.BAREMETAL) == 5.0
