"""Tests for StorageParameters."""

from __future__ import annotations

import pytest

from cloud_stage import ConfigError, ProxyInfo, StorageParameters


def test_defaults() -> None:
    params = StorageParameters()
    assert params.root_temp_dir == ""
    assert params.max_retry_count == 10
    assert params.expected_partition_count == 1000
    assert params.parallelism == 10
    assert params.proxy_info is None


def test_repr_hides_secrets() -> None:
    params = StorageParameters(aws_secret_key="top-secret", azure_sas="sig=private")
    assert "top-secret" not in repr(params)
    assert "sig=private" not in repr(params)


class TestFromEnv:
    def test_reads_mapping(self) -> None:
        params = StorageParameters.from_env(
            environ={
                "CLOUD_STAGE_ROOT_TEMPDIR": "s3a://bucket/tmp",
                "AWS_ACCESS_KEY_ID": "AKIA",
                "AWS_SECRET_ACCESS_KEY": "secret",
                "CLOUD_STAGE_MAX_RETRY_COUNT": "3",
                "CLOUD_STAGE_EXPECTED_PARTITION_COUNT": "64",
                "CLOUD_STAGE_PARALLELISM": "8",
            }
        )

        assert params.root_temp_dir == "s3a://bucket/tmp"
        assert params.aws_access_key == "AKIA"
        assert params.aws_secret_key == "secret"
        assert params.azure_sas is None
        assert params.max_retry_count == 3
        assert params.expected_partition_count == 64
        assert params.parallelism == 8

    def test_proxy(self) -> None:
        params = StorageParameters.from_env(
            environ={
                "CLOUD_STAGE_PROXY_HOST": "proxy.local",
                "CLOUD_STAGE_PROXY_PORT": "3128",
                "CLOUD_STAGE_PROXY_USER": "svc",
            }
        )
        assert params.proxy_info == ProxyInfo("proxy.local", 3128, user="svc")

    def test_proxy_without_port(self) -> None:
        with pytest.raises(ConfigError):
            StorageParameters.from_env(environ={"CLOUD_STAGE_PROXY_HOST": "proxy.local"})

    @pytest.mark.parametrize(
        "name, value",
        [
            ("CLOUD_STAGE_MAX_RETRY_COUNT", "many"),
            ("CLOUD_STAGE_MAX_RETRY_COUNT", "-1"),
            ("CLOUD_STAGE_PARALLELISM", "0"),
            ("CLOUD_STAGE_EXPECTED_PARTITION_COUNT", "1.5"),
        ],
    )
    def test_invalid_numbers(self, name, value) -> None:
        with pytest.raises(ConfigError, match=name):
            StorageParameters.from_env(environ={name: value})

    def test_blank_numbers_use_defaults(self) -> None:
        params = StorageParameters.from_env(environ={"CLOUD_STAGE_PARALLELISM": " "})
        assert params.parallelism == 10

    def test_loads_env_file(self, tmp_path, clean_env) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text(
            "CLOUD_STAGE_ROOT_TEMPDIR=wasbs://c@a.blob.core.windows.net/p\n"
            "CLOUD_STAGE_AZURE_SAS=sig=abc\n"
            "CLOUD_STAGE_MAX_RETRY_COUNT=5\n"
        )

        params = StorageParameters.from_env(env_file)

        assert params.root_temp_dir == "wasbs://c@a.blob.core.windows.net/p"
        assert params.azure_sas == "sig=abc"
        assert params.max_retry_count == 5

    def test_process_environment_wins_over_env_file(self, tmp_path, clean_env, monkeypatch) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("CLOUD_STAGE_PARALLELISM=2\n")
        monkeypatch.setenv("CLOUD_STAGE_PARALLELISM", "6")

        assert StorageParameters.from_env(env_file).parallelism == 6
