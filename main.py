import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from config.config import SystemConfig, load_config
from errors import VotingError
from storage.store import VotingStore
from utils.utils import create_performance_report, setup_logging, validate_environment
from vote_coordinator import VotePayload, VotingSystem
from zk.commitments import generate, parse_field_element
from zk.merkle import Accumulator
from zk.proofs import ensure_circuit_artifacts

logger = logging.getLogger(__name__)


def emit(data: Dict[str, Any], output: Optional[str] = None):
    text = json.dumps(data, indent=2)
    if output:
        Path(output).write_text(text + "\n")
        logger.info(f"Wrote {output}")
    print(text)


def read_json(source: str) -> Dict[str, Any]:
    if source == '-':
        return json.load(sys.stdin)
    with open(source) as f:
        return json.load(f)


async def cmd_register(config: SystemConfig, args) -> Dict[str, Any]:
    system = VotingSystem.from_config(config)
    try:
        if args.commitment:
            root = await system.coordinator.register(args.commitment)
            return {'commitment': args.commitment, 'root': str(root)}

        credentials = await system.coordinator.enroll(args.identity_verified)
        result = credentials.to_dict()
        result['root'] = str(system.accumulator.root)
        return result
    finally:
        await system.close()


async def cmd_prepare(config: SystemConfig, args) -> Dict[str, Any]:
    missing = validate_environment(config.prover.snarkjs_bin)
    if missing:
        raise VotingError(f"Missing tools: {', '.join(missing)}")
    ensure_circuit_artifacts(config.prover)

    system = VotingSystem.from_config(config)
    try:
        payload = await system.coordinator.prepare_vote(
            args.nullifier, args.secret, args.election, args.party)
        logger.debug(create_performance_report(system.monitor))
        return payload.to_dict()
    finally:
        await system.close()


async def cmd_cast(config: SystemConfig, args) -> Dict[str, Any]:
    payload = VotePayload.from_dict(read_json(args.payload))
    system = VotingSystem.from_config(config)
    try:
        receipt = await system.coordinator.cast_vote(payload)
        return receipt.to_dict()
    finally:
        await system.close()


async def cmd_confirm(config: SystemConfig, args) -> Dict[str, Any]:
    system = VotingSystem.from_config(config)
    try:
        receipt = await system.coordinator.confirm_vote(args.nullifier_hash)
        return receipt.to_dict()
    finally:
        await system.close()


async def cmd_sync_root(config: SystemConfig, args) -> Dict[str, Any]:
    system = VotingSystem.from_config(config)
    try:
        result = await system.synchronizer.reconcile()
        return result.to_dict()
    finally:
        await system.close()


async def cmd_root(config: SystemConfig, args) -> Dict[str, Any]:
    store = VotingStore(config.store)
    try:
        accumulator = Accumulator(config.tree.depth, leaves=store.all_commitments())
    finally:
        store.close()

    result = {
        'root': str(accumulator.root),
        'leaves': accumulator.size,
        'capacity': accumulator.capacity,
    }
    if args.on_chain:
        system = VotingSystem.from_config(config)
        try:
            on_chain = await system.synchronizer.current_on_chain_root()
            result['onChainRoot'] = str(on_chain) if on_chain is not None else None
            result['known'] = await system.synchronizer.is_root_known(accumulator.root)
        finally:
            await system.close()
    return result


def cmd_has_voted(config: SystemConfig, args) -> Dict[str, Any]:
    store = VotingStore(config.store)
    try:
        nullifier_hash = parse_field_element(args.nullifier_hash, 'nullifierHash')
        return {'nullifierHash': str(nullifier_hash),
                'hasVoted': store.nullifier_used(nullifier_hash)}
    finally:
        store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Anonymous voting credentials and vote submission')
    parser.add_argument('--config', type=str, default='config.yaml',
                        help='Config file path')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Override configured log level')

    sub = parser.add_subparsers(dest='command', required=True)

    credentials = sub.add_parser('credentials', help='Generate a credential pair (not registered)')
    credentials.add_argument('--output', type=str, help='Also write JSON to this file')

    register = sub.add_parser('register', help='Register a commitment or enroll a verified voter')
    register.add_argument('--commitment', type=str, help='Existing commitment to register')
    register.add_argument('--identity-verified', action='store_true',
                          help='Identity check passed; issue fresh credentials')
    register.add_argument('--output', type=str, help='Also write JSON to this file')

    prepare = sub.add_parser('prepare', help='Build a vote proof')
    prepare.add_argument('--nullifier', required=True)
    prepare.add_argument('--secret', required=True)
    prepare.add_argument('--election', required=True, help='Election id')
    prepare.add_argument('--party', required=True, help='Party id')
    prepare.add_argument('--output', type=str, help='Also write payload JSON to this file')

    cast = sub.add_parser('cast', help='Submit a prepared vote')
    cast.add_argument('--payload', required=True, help="Payload JSON file or '-' for stdin")

    confirm = sub.add_parser('confirm', help='Resume waiting on a vote whose confirmation timed out')
    confirm.add_argument('--nullifier-hash', required=True)

    has_voted = sub.add_parser('has-voted', help='Check whether a nullifier hash was used')
    has_voted.add_argument('--nullifier-hash', required=True)

    sub.add_parser('sync-root', help='Push the local root to the verifier if it differs')

    root = sub.add_parser('root', help='Show the local accumulator root')
    root.add_argument('--on-chain', action='store_true', help='Also query the verifier')

    return parser


COMMANDS = {
    'register': cmd_register,
    'prepare': cmd_prepare,
    'cast': cmd_cast,
    'confirm': cmd_confirm,
    'sync-root': cmd_sync_root,
    'root': cmd_root,
}


def main(argv=None):
    args = build_parser().parse_args(argv)

    config = load_config(Path(args.config)).apply_env_overrides()
    setup_logging(args.log_level or config.log_level, log_dir=config.log_dir)

    try:
        if args.command == 'credentials':
            result = generate().to_dict()
        elif args.command == 'has-voted':
            result = cmd_has_voted(config, args)
        else:
            result = asyncio.run(COMMANDS[args.command](config, args))
    except VotingError as e:
        logger.error(f"{args.command} failed: {e}")
        print(json.dumps({'error': type(e).__name__, 'message': str(e)}), file=sys.stderr)
        sys.exit(1)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(json.dumps({'error': 'InputError', 'message': str(e)}), file=sys.stderr)
        sys.exit(2)

    emit(result, getattr(args, 'output', None))


if __name__ == "__main__":
    main()
