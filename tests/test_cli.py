import json

from branchwatch.cli import build_parser, main
from branchwatch.seed import BRANCH_ROWS


def test_parser_requires_subcommand():
    args = build_parser().parse_args(["serve", "--port", "9000"])
    assert args.subcommand == "serve"
    assert args.port == 9000


def test_settings_command_masks_secrets(capsys, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "AIzaSyVerySecretKey")
    assert main(["settings"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["llm"]["gemini"]["api_key"] == "AIz***Key"
    assert "Otro" in out["incidents"]["categories"]


def test_classify_command_uses_keyword_rules(capsys):
    assert main(["classify", "--text", "The fryer is broken"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["priority"] == "Medium"
    assert result["category"] == "Equipo de Cocina"


def test_classify_without_evidence(capsys):
    assert main(["classify"]) == 1
    assert "ERROR" in capsys.readouterr().err


def test_seed_command(capsys):
    assert main(["seed"]) == 0
    assert f"Seeded {len(BRANCH_ROWS)} branches and 3 incidents" in capsys.readouterr().out
