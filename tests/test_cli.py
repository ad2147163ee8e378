"""Tests for cli.py - the wg-peers command line."""

import json

import pytest

from wg_peers.cli import build_parser, main


class TestParser:
    """Test argument parsing."""

    def test_add_peer_with_expiry(self):
        """add-peer takes a name and an optional expiry."""
        args = build_parser().parse_args(['add-peer', 'alice', '--expires', '2027-01-01'])
        assert args.name == 'alice'
        assert args.expires == '2027-01-01'

    def test_no_command_prints_help(self, capsys):
        """No subcommand prints usage and succeeds."""
        assert main([]) == 0
        assert 'usage' in capsys.readouterr().out


class TestCommands:
    """Test commands against an injected registry."""

    def test_add_and_list(self, loaded_registry, capsys):
        """add-peer prints the client config; list-peers shows it."""
        assert main(['add-peer', 'alice'], registry=loaded_registry) == 0
        out = capsys.readouterr().out
        assert 'Peer ajouté : alice (10.8.0.2)' in out
        assert '[Interface]' in out

        assert main(['list-peers'], registry=loaded_registry) == 0
        out = capsys.readouterr().out
        assert 'alice (10.8.0.2)' in out

    def test_peer_by_name(self, loaded_registry, capsys):
        """Peers can be addressed by unique name."""
        peer = loaded_registry.create('alice')
        assert main(['disable', 'alice'], registry=loaded_registry) == 0
        assert loaded_registry.get(peer.id).enabled is False
        assert main(['enable', peer.id], registry=loaded_registry) == 0
        assert loaded_registry.get(peer.id).enabled is True

    def test_unknown_peer_is_error(self, loaded_registry, capsys):
        """Errors are reported on stderr with exit code 1."""
        assert main(['remove-peer', 'nobody'], registry=loaded_registry) == 1
        assert '[ERREUR]' in capsys.readouterr().err

    def test_ambiguous_name(self, loaded_registry, capsys):
        """Two peers with one name must be addressed by id."""
        loaded_registry.create('twin')
        loaded_registry.create('twin')
        assert main(['disable', 'twin'], registry=loaded_registry) == 1

    def test_set_address_invalid(self, loaded_registry, capsys):
        """Validation errors map to exit code 1."""
        loaded_registry.create('alice')
        assert main(['set-address', 'alice', 'nope'], registry=loaded_registry) == 1
        assert 'Invalid Address' in capsys.readouterr().err

    def test_metrics_json(self, loaded_registry, capsys):
        """metrics --json prints the structured summary."""
        loaded_registry.create('alice')
        assert main(['metrics', '--json'], registry=loaded_registry) == 0
        data = json.loads(capsys.readouterr().out)
        assert data['wireguard_configured_peers'] == 1

    def test_backup_restore_files(self, loaded_registry, tmp_path, capsys):
        """backup -o writes a file restore reads back."""
        loaded_registry.create('alice')
        target = tmp_path / 'backup.json'
        assert main(['backup', '-o', str(target)], registry=loaded_registry) == 0
        before = loaded_registry.load()
        assert main(['restore', str(target)], registry=loaded_registry) == 0
        assert loaded_registry.load() == before

    def test_one_time_link(self, loaded_registry, capsys):
        """one-time-link issues then clears a token."""
        peer = loaded_registry.create('alice')
        assert main(['one-time-link', 'alice'], registry=loaded_registry) == 0
        assert loaded_registry.get(peer.id).one_time_link is not None
        assert main(['one-time-link', 'alice', '--clear'], registry=loaded_registry) == 0
        assert loaded_registry.get(peer.id).one_time_link is None

    @pytest.mark.parametrize('flag,suffix', [([], '.png'), (['--svg'], '.svg')])
    def test_generate_qr(self, loaded_registry, tmp_path, monkeypatch, capsys, flag, suffix):
        """generate-qr writes an image under configs/."""
        monkeypatch.chdir(tmp_path)
        loaded_registry.create('alice')
        assert main(['generate-qr', 'alice', *flag], registry=loaded_registry) == 0
        assert (tmp_path / 'configs' / f'alice{suffix}').exists()

    @pytest.mark.parametrize('command', [['export-peer'], ['generate-qr', '--svg']])
    def test_output_stays_in_configs(self, loaded_registry, tmp_path, monkeypatch, capsys, command):
        """Peer names are sanitized before being used as file names."""
        workdir = tmp_path / 'work'
        workdir.mkdir()
        monkeypatch.chdir(workdir)
        peer = loaded_registry.create('../escape')
        assert main([command[0], peer.id, *command[1:]], registry=loaded_registry) == 0
        assert not list(workdir.glob('escape*'))
        written = [p.name for p in (workdir / 'configs').iterdir()]
        assert len(written) == 1
        assert written[0].startswith('_escape.')

    def test_output_falls_back_to_id(self, loaded_registry, tmp_path, monkeypatch, capsys):
        """A name with nothing usable is replaced by the peer id."""
        monkeypatch.chdir(tmp_path)
        peer = loaded_registry.create('..')
        assert main(['export-peer', peer.id], registry=loaded_registry) == 0
        assert (tmp_path / 'configs' / f'{peer.id}.conf').exists()
