"""Command-line entry point"""

import json
import logging

import pytest

import main
from config.config import StoreConfig
from storage.store import VotingStore
from zk.commitments import recreate


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('VOTING_DATABASE_URL', f"sqlite:///{tmp_path / 'cli.db'}")

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield tmp_path
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_credentials(cli_env, capsys):
    main.main(['--config', 'missing.yaml', 'credentials', '--output', 'creds.json'])

    printed = json.loads(capsys.readouterr().out)
    saved = json.loads((cli_env / 'creds.json').read_text())
    assert printed == saved

    pair = recreate(int(printed['nullifier']), int(printed['secret']))
    assert str(pair.commitment) == printed['commitment']
    assert str(pair.nullifier_hash) == printed['nullifierHash']


def test_has_voted(cli_env, capsys):
    store = VotingStore(StoreConfig(database_url=f"sqlite:///{cli_env / 'cli.db'}"))
    store.mark_nullifier_used(1234)
    store.close()

    main.main(['--config', 'missing.yaml', 'has-voted', '--nullifier-hash', '1234'])
    assert json.loads(capsys.readouterr().out)['hasVoted'] is True

    main.main(['--config', 'missing.yaml', 'has-voted', '--nullifier-hash', '99'])
    assert json.loads(capsys.readouterr().out)['hasVoted'] is False


def test_local_root(cli_env, capsys):
    main.main(['--config', 'missing.yaml', 'root'])
    result = json.loads(capsys.readouterr().out)
    assert result['leaves'] == 0
    assert result['capacity'] == 2 ** 20


def test_invalid_input_exits_nonzero(cli_env, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main.main(['--config', 'missing.yaml', 'has-voted', '--nullifier-hash', 'xyz'])
    assert excinfo.value.code == 1
    last_line = capsys.readouterr().err.strip().splitlines()[-1]
    assert json.loads(last_line)['error'] == 'ValidationError'


def test_confirm_needs_contract_address(cli_env, capsys, monkeypatch):
    monkeypatch.delenv('VOTING_CONTRACT_ADDRESS', raising=False)
    with pytest.raises(SystemExit) as excinfo:
        main.main(['--config', 'missing.yaml', 'confirm', '--nullifier-hash', '1234'])
    assert excinfo.value.code == 1
    last_line = capsys.readouterr().err.strip().splitlines()[-1]
    assert json.loads(last_line)['error'] == 'ChainClientError'
