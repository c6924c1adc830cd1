"""
Tests for settings loading and source chain configuration.
"""

import json

import pytest
from pydantic import ValidationError

from teleport_relayer.config import (
    BASE_SEPOLIA_CHAIN_ID,
    ETH_SEPOLIA_CHAIN_ID,
    ConfigurationError,
    RelayerConfig,
    Settings,
    build_source_chains,
)

from conftest import CHAIN_A, CHAIN_B

DESTINATION = dict(
    dst_rpc="http://destination.invalid",
    private_key="0x" + "01" * 32,
    token_contract="0x" + "cc" * 20,
)


class TestBuildSourceChains:
    def test_incomplete_chains_skipped(self):
        settings = Settings(
            _env_file=None,
            eth_sepolia_rpc="http://eth.invalid",
            eth_sepolia_lock_contract="0x" + "aa" * 20,
            eth_sepolia_start_block=5_000_000,
            base_sepolia_rpc="http://base.invalid",
        )

        chains = build_source_chains(settings)

        assert [c.chain_id for c in chains] == [ETH_SEPOLIA_CHAIN_ID]
        assert chains[0].name == "Ethereum Sepolia"
        assert chains[0].start_block == 5_000_000
        assert chains[0].decimals == 18

    def test_both_default_chains(self):
        settings = Settings(
            _env_file=None,
            eth_sepolia_rpc="http://eth.invalid",
            eth_sepolia_lock_contract="0x" + "aa" * 20,
            base_sepolia_rpc="http://base.invalid",
            base_sepolia_lock_contract="0x" + "bb" * 20,
        )

        chains = build_source_chains(settings)

        assert [c.chain_id for c in chains] == [ETH_SEPOLIA_CHAIN_ID, BASE_SEPOLIA_CHAIN_ID]

    def test_extra_chains_from_env(self, monkeypatch):
        monkeypatch.setenv(
            "EXTRA_SOURCE_CHAINS",
            json.dumps(
                [
                    {
                        "name": "Optimism Sepolia",
                        "rpc_url": "http://op.invalid",
                        "lock_contract": "0x" + "dd" * 20,
                        "chain_id": 11155420,
                        "decimals": 18,
                        "start_block": 7,
                    },
                    {"name": "Incomplete", "chain_id": 1},
                ]
            ),
        )
        monkeypatch.setenv("LOCK_EVENT_NAME", "Deposited")

        settings = Settings(_env_file=None)
        chains = build_source_chains(settings)

        assert settings.lock_event_name == "Deposited"
        assert [(c.name, c.chain_id, c.start_block) for c in chains] == [
            ("Optimism Sepolia", 11155420, 7)
        ]


class TestValidate:
    def test_valid(self):
        config = RelayerConfig(
            settings=Settings(_env_file=None, **DESTINATION),
            source_chains=[CHAIN_A, CHAIN_B],
        )
        config.validate()
        assert config.has_destination

    def test_no_source_chain(self):
        config = RelayerConfig(settings=Settings(_env_file=None, **DESTINATION))

        with pytest.raises(ConfigurationError, match="No source chain"):
            config.validate()

    def test_duplicate_chain_ids(self):
        config = RelayerConfig(
            settings=Settings(_env_file=None, **DESTINATION),
            source_chains=[CHAIN_A, CHAIN_A],
        )

        with pytest.raises(ConfigurationError, match="Duplicate"):
            config.validate()

    def test_destination_required(self):
        config = RelayerConfig(settings=Settings(_env_file=None), source_chains=[CHAIN_A])

        with pytest.raises(ConfigurationError, match="DST_RPC"):
            config.validate()
        config.validate(require_destination=False)

    def test_block_range(self):
        config = RelayerConfig(
            settings=Settings(_env_file=None, max_block_range=0, **DESTINATION),
            source_chains=[CHAIN_A],
        )

        with pytest.raises(ConfigurationError, match="MAX_BLOCK_RANGE"):
            config.validate()

    def test_from_env_file(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text(
            "BASE_SEPOLIA_RPC=http://base.invalid\n"
            f"BASE_SEPOLIA_LOCK_CONTRACT=0x{'bb' * 20}\n"
            "POLL_INTERVAL_SECONDS=3\n"
        )

        config = RelayerConfig.from_env(env)

        assert [c.chain_id for c in config.source_chains] == [BASE_SEPOLIA_CHAIN_ID]
        assert config.settings.poll_interval_seconds == 3


class TestLogLevel:
    def test_normalised_to_upper_case(self):
        assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_unknown_level_rejected(self):
        with pytest.raises(ValidationError, match="must be one of"):
            Settings(_env_file=None, log_level="verbose")
