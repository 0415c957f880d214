#!/usr/bin/env python3
#
# tests/test_cli.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

import json

import pytest
from conftest import add_domain

from edgecert import cli
from edgecert.db.sqlite_runtime import session
from edgecert.db.sqlite_schema import init_schema
from edgecert.issuance.errors import PropagationTimeout
from edgecert.utils import config as config_mod


@pytest.fixture
def env(tmp_path, monkeypatch):
	monkeypatch.setattr(config_mod, "load_dotenv", lambda dotenv_path=None: None)
	for name in ("DNS_RESOLVERS", "DNS_PROPAGATION_TIMEOUT", "DNS_PROPAGATION_INTERVAL", "ACME_VALIDATION_TIMEOUT"):
		monkeypatch.delenv(name, raising=False)
	monkeypatch.setenv("EDGECERT_DATA_DIR", str(tmp_path / "data"))
	monkeypatch.setenv("LETS_ENCRYPT_EMAIL", "ops@example.com")
	monkeypatch.setenv("DOMAIN", "example.com")
	return tmp_path / "data" / "edgecert.db"


class FailingOrchestrator:
	async def issue(self, subdomain):
		raise PropagationTimeout(f"_acme-challenge.{subdomain}.example.com", "abc", 300, 20)


def test_show_prints_record_and_history(env, capsys):
	with session(env) as conn:
		init_schema(conn)
		add_domain(conn)

	assert cli.main(["show", "acme-corp"]) == cli.EXIT_OK

	payload = json.loads(capsys.readouterr().out)
	assert payload["subdomain"] == "acme-corp"
	assert payload["status"] == "pending"
	assert [e["status"] for e in payload["events"]] == ["pending"]


def test_show_unknown_domain(env, capsys):
	assert cli.main(["show", "nobody"]) == cli.EXIT_FAILED
	assert "not registered" in capsys.readouterr().err


def test_issue_failure_exit_code(env, monkeypatch, capsys):
	monkeypatch.setattr(cli.Orchestrator, "from_config", classmethod(lambda cls, cfg: FailingOrchestrator()))

	assert cli.main(["issue", "acme-corp"]) == cli.EXIT_FAILED
	assert "did not propagate" in capsys.readouterr().err


def test_missing_configuration(env, monkeypatch, capsys):
	monkeypatch.delenv("LETS_ENCRYPT_EMAIL")
	assert cli.main(["show", "acme-corp"]) == cli.EXIT_USAGE
	assert "LETS_ENCRYPT_EMAIL" in capsys.readouterr().err


def test_subcommand_required():
	with pytest.raises(SystemExit):
		cli.main([])


def test_subdomain_must_be_a_label(env, capsys):
	with pytest.raises(SystemExit) as excinfo:
		cli.main(["issue", "../../escaped"])

	assert excinfo.value.code == cli.EXIT_USAGE
	assert "not a single DNS label" in capsys.readouterr().err
	assert not (env.parent.parent / "escaped.lock").exists()


class BrokenDiskOrchestrator:
	async def issue_and_deploy(self, subdomain):
		raise PermissionError(13, "Permission denied", f"/etc/ssl/{subdomain}.example.com.key")


def test_unexpected_failure_reported_without_traceback(env, monkeypatch, capsys):
	monkeypatch.setattr(cli.Orchestrator, "from_config", classmethod(lambda cls, cfg: BrokenDiskOrchestrator()))

	assert cli.main(["issue", "acme-corp", "--deploy"]) == cli.EXIT_FAILED
	err = capsys.readouterr().err
	assert err.startswith("issue failed: ")
	assert "Permission denied" in err
	assert "Traceback" not in err
