import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class TreeConfig:
    depth: int = 20

    def __post_init__(self):
        from zk.merkle import TREE_DEPTH
        if self.depth != TREE_DEPTH:
            raise ValueError(f"Tree depth is fixed at {TREE_DEPTH} by the circuit, got {self.depth}")


@dataclass
class ProverConfig:
    snarkjs_bin: str = "snarkjs"
    wasm_path: Path = field(default_factory=lambda: Path("circuits/Verifier.wasm"))
    zkey_path: Path = field(default_factory=lambda: Path("circuits/Verifier.zkey"))
    wasm_sha256: Optional[str] = None
    zkey_sha256: Optional[str] = None
    artifact_base_url: Optional[str] = None
    proof_timeout: int = 120
    download_timeout: int = 60

    def __post_init__(self):
        self.wasm_path = Path(self.wasm_path)
        self.zkey_path = Path(self.zkey_path)


@dataclass
class ChainConfig:
    rpc_url: str = "http://127.0.0.1:8545"
    contract_address: Optional[str] = None
    abi_path: Optional[Path] = None
    chain_id: Optional[int] = None
    private_key_env: str = "VOTING_PRIVATE_KEY"
    gas_limit: Optional[int] = None
    gas_multiplier: float = 1.2
    confirmation_timeout: float = 180.0
    poll_latency: float = 2.0
    verify_root_after_proof: bool = True

    def __post_init__(self):
        if self.abi_path is not None:
            self.abi_path = Path(self.abi_path)

    @property
    def private_key(self) -> Optional[str]:
        return os.environ.get(self.private_key_env)


@dataclass
class StoreConfig:
    database_url: str = "sqlite:///voting.db"
    echo_sql: bool = False


@dataclass
class SystemConfig:
    tree: TreeConfig = field(default_factory=TreeConfig)
    prover: ProverConfig = field(default_factory=ProverConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    log_level: str = "INFO"
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        if self.enable_debug_mode:
            self.log_level = "DEBUG"

    def apply_env_overrides(self):
        """VOTING_RPC_URL / VOTING_CONTRACT_ADDRESS / VOTING_DATABASE_URL"""
        self.chain.rpc_url = os.environ.get('VOTING_RPC_URL', self.chain.rpc_url)
        self.chain.contract_address = os.environ.get(
            'VOTING_CONTRACT_ADDRESS', self.chain.contract_address)
        self.store.database_url = os.environ.get(
            'VOTING_DATABASE_URL', self.store.database_url)
        return self


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}

            tree_data = config_data.get('tree', {})
            tree_config = TreeConfig(depth=tree_data.get('depth', 20))

            prover_data = config_data.get('prover', {})
            prover_config = ProverConfig(
                snarkjs_bin=prover_data.get('snarkjs_bin', 'snarkjs'),
                wasm_path=Path(prover_data.get('wasm_path', 'circuits/Verifier.wasm')),
                zkey_path=Path(prover_data.get('zkey_path', 'circuits/Verifier.zkey')),
                wasm_sha256=prover_data.get('wasm_sha256'),
                zkey_sha256=prover_data.get('zkey_sha256'),
                artifact_base_url=prover_data.get('artifact_base_url'),
                proof_timeout=prover_data.get('proof_timeout', 120),
                download_timeout=prover_data.get('download_timeout', 60)
            )

            chain_data = config_data.get('chain', {})
            chain_config = ChainConfig(
                rpc_url=chain_data.get('rpc_url', 'http://127.0.0.1:8545'),
                contract_address=chain_data.get('contract_address'),
                abi_path=chain_data.get('abi_path'),
                chain_id=chain_data.get('chain_id'),
                private_key_env=chain_data.get('private_key_env', 'VOTING_PRIVATE_KEY'),
                gas_limit=chain_data.get('gas_limit'),
                gas_multiplier=chain_data.get('gas_multiplier', 1.2),
                confirmation_timeout=chain_data.get('confirmation_timeout', 180.0),
                poll_latency=chain_data.get('poll_latency', 2.0),
                verify_root_after_proof=chain_data.get('verify_root_after_proof', True)
            )

            store_data = config_data.get('store', {})
            store_config = StoreConfig(
                database_url=store_data.get('database_url', 'sqlite:///voting.db'),
                echo_sql=store_data.get('echo_sql', False)
            )

            return SystemConfig(
                tree=tree_config,
                prover=prover_config,
                chain=chain_config,
                store=store_config,
                log_dir=Path(config_data.get('log_dir', 'logs')),
                log_level=config_data.get('log_level', 'INFO'),
                enable_debug_mode=config_data.get('enable_debug_mode', False)
            )
        except (OSError, yaml.YAMLError, AttributeError, TypeError) as e:
            logger.warning(f"Could not load config file {config_path}: {e}")
            logger.warning("Using default configuration")

    return SystemConfig()


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")

    config_data = {
        'tree': {
            'depth': config.tree.depth
        },
        'prover': {
            'snarkjs_bin': config.prover.snarkjs_bin,
            'wasm_path': str(config.prover.wasm_path),
            'zkey_path': str(config.prover.zkey_path),
            'wasm_sha256': config.prover.wasm_sha256,
            'zkey_sha256': config.prover.zkey_sha256,
            'artifact_base_url': config.prover.artifact_base_url,
            'proof_timeout': config.prover.proof_timeout,
            'download_timeout': config.prover.download_timeout
        },
        'chain': {
            'rpc_url': config.chain.rpc_url,
            'contract_address': config.chain.contract_address,
            'abi_path': str(config.chain.abi_path) if config.chain.abi_path else None,
            'chain_id': config.chain.chain_id,
            'private_key_env': config.chain.private_key_env,
            'gas_limit': config.chain.gas_limit,
            'gas_multiplier': config.chain.gas_multiplier,
            'confirmation_timeout': config.chain.confirmation_timeout,
            'poll_latency': config.chain.poll_latency,
            'verify_root_after_proof': config.chain.verify_root_after_proof
        },
        'store': {
            'database_url': config.store.database_url,
            'echo_sql': config.store.echo_sql
        },
        'log_dir': str(config.log_dir),
        'log_level': config.log_level,
        'enable_debug_mode': config.enable_debug_mode
    }

    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
