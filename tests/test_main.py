import main
from fakes import FakeResponse, make_client, sse


class TestHelpers:
    def test_slugify(self):
        assert main._slugify("Quantum computing: a primer!") == "Quantum_computing_a_primer"
        assert main._slugify("   ") == "deck"
        assert len(main._slugify("x" * 200)) == 80

    def test_parse_args_defaults(self):
        args = main.parse_args(["climate"])
        assert args.topic == "climate"
        assert args.workers == 1
        assert not args.no_stream and not args.no_render
        assert args.purge_artifacts is None


class TestCommands:
    def test_help(self, capsys):
        assert main.main(["help"]) == 0
        assert "Quick start" in capsys.readouterr().out

    def test_list_templates(self, capsys):
        assert main.main(["--list-templates"]) == 0
        out = capsys.readouterr().out
        assert "Professional Blue" in out and "Ocean Depth" in out

    def test_sample(self, capsys):
        assert main.main(["--sample", "2"]) == 0
        assert len(capsys.readouterr().out.strip().splitlines()) == 2

    def test_list_artifacts_empty(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("TOPIC2DECK_ARTIFACT_DIR", str(tmp_path))
        assert main.main(["--list-artifacts"]) == 0
        assert "No stored artifacts." in capsys.readouterr().out

    def test_unknown_template(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TOPIC2DECK_ARTIFACT_DIR", str(tmp_path / "art"))
        assert main.main(["topic", "--template", "Neon", "--out-dir", str(tmp_path / "out")]) == 2

    def test_full_run_without_rendering(self, tmp_path, monkeypatch, capsys):
        client, _ = make_client(FakeResponse(lines=sse("Report ", "text")), FakeResponse(lines=sse("# Deck\n\nBody")))
        monkeypatch.setattr(main, "init_llm", lambda cfg: client)
        monkeypatch.setenv("TOPIC2DECK_ARTIFACT_DIR", str(tmp_path / "art"))
        out_dir = tmp_path / "out"
        assert main.main(["quantum computing", "--no-render", "--out-dir", str(out_dir)]) == 0
        assert "Report text" in capsys.readouterr().out
        assert (out_dir / "research.md").read_text(encoding="utf-8") == "Report text"
        assert "marp: true" in (out_dir / "deck.md").read_text(encoding="utf-8")
        assert not (out_dir / "deck.html").exists()

    def test_pipeline_failure_exit_code(self, tmp_path, monkeypatch):
        client, _ = make_client(FakeResponse(status_code=401, text="unauthorized"))
        monkeypatch.setattr(main, "init_llm", lambda cfg: client)
        monkeypatch.setenv("TOPIC2DECK_ARTIFACT_DIR", str(tmp_path / "art"))
        assert main.main(["topic", "--no-render", "--out-dir", str(tmp_path / "out")]) == 1
