"""eth-bootstrap command line."""

import json
import logging

import pytest

from eth_bootstrap.cli import main
from eth_bootstrap.manifest import DeploymentManifest


@pytest.fixture(autouse=True)
def no_secrets(monkeypatch):
    """Never pick up a real key or node from the developer shell."""
    monkeypatch.delenv("PRIVATE_KEY", raising=False)
    monkeypatch.delenv("JSON_RPC_URL", raising=False)


@pytest.fixture()
def deploy_args(networks_file, artifacts_folder, tmp_path) -> list[str]:
    return [
        "deploy",
        "--simulate",
        "--network",
        "base",
        "--networks-file",
        str(networks_file),
        "--artifacts",
        str(artifacts_folder),
        "--manifest",
        str(tmp_path / "deployments" / "base.json"),
    ]


def test_simulated_deploy(deploy_args, tmp_path, capsys):
    """Simulated run writes a complete manifest."""
    assert main(deploy_args) == 0

    manifest = DeploymentManifest.load(tmp_path / "deployments" / "base.json")
    assert manifest.chain_id == 8453
    assert manifest.profile == "isolated"
    assert len(manifest) == 6

    out = capsys.readouterr().out
    assert "Deployment of isolated on base complete" in out
    assert manifest.get_address("hook") in out


def test_show(deploy_args, tmp_path, capsys):
    main(deploy_args)
    capsys.readouterr()

    assert main(["show", "--manifest", str(tmp_path / "deployments" / "base.json")]) == 0
    out = capsys.readouterr().out
    assert "Network base, chain 8453, profile isolated" in out
    assert "finalize_factory_proxy" in out
    assert "simulated" in out


def test_show_missing_manifest(tmp_path, capsys):
    assert main(["show", "--manifest", str(tmp_path / "missing.json")]) == 1
    assert "No manifest file" in capsys.readouterr().out


def test_live_run_refuses_simulated_manifest(deploy_args, tmp_path, capsys):
    """Dry run entries are never taken as deployed contracts."""
    assert main(deploy_args) == 0
    capsys.readouterr()

    deploy_args.remove("--simulate")
    assert main(deploy_args) == 1
    assert "written by a simulated run" in capsys.readouterr().out

    manifest = DeploymentManifest.load(tmp_path / "deployments" / "base.json")
    assert manifest.simulated
    assert len(manifest) == 6


def test_deploy_implementations_with_settings(deploy_args, tmp_path):
    """Settings file is applied."""
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"implementation_salt": 5}))

    assert main(deploy_args + ["--profile", "implementations", "--settings", str(settings)]) == 0
    manifest = DeploymentManifest.load(tmp_path / "deployments" / "base.json")
    assert [e.step for e in manifest] == ["token_implementation", "governance_implementation"]
    assert manifest.get("token_implementation").outputs["salt"] == "5"


def test_profile_mismatch(deploy_args):
    """Manifest of one profile is not resumed with another."""
    assert main(deploy_args + ["--profile", "implementations"]) == 0
    assert main(deploy_args + ["--profile", "isolated"]) == 1


def test_unknown_network(deploy_args, capsys):
    deploy_args[deploy_args.index("base")] = "polygon"
    assert main(deploy_args) == 1
    assert "polygon" in capsys.readouterr().out


def test_deploy_needs_rpc(deploy_args):
    """Without --simulate we need a node."""
    deploy_args.remove("--simulate")
    assert main(deploy_args) == 1


def test_salt_search_exhausted(deploy_args, tmp_path, capsys):
    """Failed step is reported and earlier steps are kept."""
    assert main(deploy_args + ["--max-salt-attempts", "1"]) == 1
    assert "Deployment halted at step hook" in capsys.readouterr().out

    manifest = DeploymentManifest.load(tmp_path / "deployments" / "base.json")
    assert [e.step for e in manifest] == ["factory_proxy"]


def test_predict_create(capsys):
    assert main(["predict", "--deployer", "0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0", "--nonce", "0"]) == 0
    assert capsys.readouterr().out.strip().lower() == "0xcd234a471b72ba2f1ccf0a70fcaba648a5eecd8d"


def test_predict_create2(capsys):
    """EIP-1014 example 0."""
    args = [
        "predict",
        "--deployer",
        "0x0000000000000000000000000000000000000000",
        "--salt",
        "0",
        "--init-code",
        "0x00",
    ]
    assert main(args) == 0
    assert capsys.readouterr().out.strip().lower() == "0x4d1a2e2bb4f88f0250f26ffff098b0b30b26bf38"


def test_predict_default_deployer(capsys):
    assert main(["predict", "--nonce", "0"]) == 0
    assert capsys.readouterr().out.strip().startswith("0x")

    assert main(["predict", "--salt", "1"]) == 1


def test_profiles(capsys):
    assert main(["profiles"]) == 0
    out = capsys.readouterr().out
    assert "isolated" in out
    assert "custom-factory" in out
    assert "implementation.governance" in out


def test_log_file(deploy_args, tmp_path):
    log_file = tmp_path / "logs" / "bootstrap.log"
    try:
        assert main(["--log-file", str(log_file)] + deploy_args) == 0
    finally:
        root = logging.getLogger()
        for handler in list(root.handlers):
            if isinstance(handler, logging.FileHandler) and handler.baseFilename == str(log_file):
                root.removeHandler(handler)
                handler.close()

    assert "Step 6/6 finalize_factory_proxy complete" in log_file.read_text()
