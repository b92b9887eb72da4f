"""YAML configuration loading, saving and environment overrides"""

from pathlib import Path

import pytest

from config.config import ChainConfig, SystemConfig, TreeConfig, load_config, save_config


def test_defaults_when_file_missing(tmp_path):
    config = load_config(tmp_path / 'missing.yaml')
    assert config.tree.depth == 20
    assert config.chain.rpc_url == 'http://127.0.0.1:8545'
    assert config.store.database_url == 'sqlite:///voting.db'


def test_save_and_load(tmp_path):
    path = tmp_path / 'config.yaml'
    config = SystemConfig()
    config.chain.contract_address = '0x' + 'ab' * 20
    config.chain.confirmation_timeout = 30.0
    config.prover.wasm_path = Path('build/Verifier.wasm')
    config.store.database_url = 'sqlite:///other.db'
    save_config(config, path)

    loaded = load_config(path)
    assert loaded.chain.contract_address == '0x' + 'ab' * 20
    assert loaded.chain.confirmation_timeout == 30.0
    assert loaded.prover.wasm_path == Path('build/Verifier.wasm')
    assert loaded.store.database_url == 'sqlite:///other.db'


def test_partial_file(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("chain:\n  rpc_url: http://node:8545\nlog_level: DEBUG\n")
    config = load_config(path)
    assert config.chain.rpc_url == 'http://node:8545'
    assert config.chain.gas_multiplier == 1.2
    assert config.log_level == 'DEBUG'


def test_malformed_file_falls_back(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("chain: [unclosed\n")
    assert load_config(path) == SystemConfig()


def test_debug_mode_forces_debug_level():
    assert SystemConfig(enable_debug_mode=True).log_level == 'DEBUG'


def test_env_overrides(monkeypatch):
    monkeypatch.setenv('VOTING_RPC_URL', 'https://rpc.example')
    monkeypatch.setenv('VOTING_CONTRACT_ADDRESS', '0x' + 'cd' * 20)
    monkeypatch.setenv('VOTING_DATABASE_URL', 'postgresql://voting@db/voting')

    config = SystemConfig().apply_env_overrides()

    assert config.chain.rpc_url == 'https://rpc.example'
    assert config.chain.contract_address == '0x' + 'cd' * 20
    assert config.store.database_url == 'postgresql://voting@db/voting'


def test_private_key_only_from_env(monkeypatch):
    monkeypatch.setenv('CUSTOM_KEY', '0x' + '02' * 32)
    chain = ChainConfig(private_key_env='CUSTOM_KEY')
    assert chain.private_key == '0x' + '02' * 32

    monkeypatch.delenv('CUSTOM_KEY')
    assert chain.private_key is None


def test_tree_depth_is_fixed(tmp_path):
    with pytest.raises(ValueError):
        TreeConfig(depth=16)

    path = tmp_path / 'config.yaml'
    path.write_text("tree:\n  depth: 16\n")
    with pytest.raises(ValueError):
        load_config(path)
