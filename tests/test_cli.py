"""
Unit tests for CLI commands.
"""

import json

from phylolik.cli.main import app


class TestCLIHelp:
    """Test help messages and basic CLI functionality."""

    def test_main_help(self, cli_runner):
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "loglik" in result.stdout
        assert "patterns" in result.stdout
        assert "simulate" in result.stdout

    def test_loglik_help(self, cli_runner):
        result = cli_runner.invoke(app, ["loglik", "--help"])
        assert result.exit_code == 0
        assert "--alignment" in result.stdout
        assert "--tree" in result.stdout
        assert "--gamma" in result.stdout

    def test_simulate_help(self, cli_runner):
        result = cli_runner.invoke(app, ["simulate", "--help"])
        assert result.exit_code == 0
        assert "--seed" in result.stdout


class TestCLILoglik:
    """Test 'loglik' command functionality."""

    def test_text_output(self, cli_runner, quartet_files):
        result = cli_runner.invoke(app, [
            "loglik",
            "-s", str(quartet_files["alignment"]),
            "-t", str(quartet_files["tree"]),
            "-m", "HKY85",
            "--kappa", "3.0",
        ])

        assert result.exit_code == 0
        assert "MODEL: HKY85" in result.stdout
        assert "Log-likelihood:" in result.stdout
        assert "kappa = 3.000000" in result.stdout
        assert "BrLen1" in result.stdout

    def test_json_output(self, cli_runner, quartet_files):
        result = cli_runner.invoke(app, [
            "loglik",
            "-s", str(quartet_files["alignment"]),
            "-t", str(quartet_files["tree"]),
            "-m", "GTR",
            "--gamma", "4",
            "--alpha", "0.5",
            "--format", "json",
        ])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["model_name"] == "GTR"
        assert data["n_sites"] == 20
        assert data["lnL"] < 0
        assert data["params"]["Gamma.alpha"] == 0.5
        assert data["optimized"] is False
        assert "per_site" not in data

    def test_per_site(self, cli_runner, quartet_files):
        result = cli_runner.invoke(app, [
            "loglik",
            "-s", str(quartet_files["alignment"]),
            "-t", str(quartet_files["tree"]),
            "-m", "JC69",
            "--per-site",
            "--format", "json",
        ])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert len(data["per_site"]) == 20
        assert abs(sum(data["per_site"]) - data["lnL"]) < 1e-8

    def test_per_site_text(self, cli_runner, quartet_files):
        result = cli_runner.invoke(app, [
            "loglik",
            "-s", str(quartet_files["alignment"]),
            "-t", str(quartet_files["tree"]),
            "--per-site",
        ])

        assert result.exit_code == 0
        assert "SITE LOG-LIKELIHOODS:" in result.stdout
        assert "  20\t" in result.stdout

    def test_optimize_improves(self, cli_runner, quartet_files):
        args = [
            "loglik",
            "-s", str(quartet_files["alignment"]),
            "-t", str(quartet_files["tree"]),
            "--format", "json",
        ]
        fixed = json.loads(cli_runner.invoke(app, args).stdout)
        result = cli_runner.invoke(app, args + ["--optimize"])

        assert result.exit_code == 0
        optimized = json.loads(result.stdout)
        assert optimized["optimized"] is True
        assert optimized["lnL"] >= fixed["lnL"]
        assert "iterations" in optimized["convergence_info"]

    def test_output_file(self, cli_runner, quartet_files, tmp_path):
        output_file = tmp_path / "result.json"

        result = cli_runner.invoke(app, [
            "loglik",
            "-s", str(quartet_files["alignment"]),
            "-t", str(quartet_files["tree"]),
            "--format", "json",
            "--output", str(output_file),
        ])

        assert result.exit_code == 0
        assert result.stdout == ""
        assert json.loads(output_file.read_text())["model_name"] == "HKY85"

    def test_missing_leaf_fails(self, cli_runner, quartet_files, tmp_path):
        tree_file = tmp_path / "five.nwk"
        tree_file.write_text("((A:0.1,B:0.2):0.05,C:0.3,(D:0.4,E:0.1):0.1);\n")

        result = cli_runner.invoke(app, [
            "loglik",
            "-s", str(quartet_files["alignment"]),
            "-t", str(tree_file),
        ])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "E" in result.output

    def test_model_alphabet_mismatch_fails(self, cli_runner, quartet_files):
        result = cli_runner.invoke(app, [
            "loglik",
            "-s", str(quartet_files["alignment"]),
            "-t", str(quartet_files["tree"]),
            "-m", "CODON",
        ])

        assert result.exit_code == 1
        assert "requires codon data" in result.output

    def test_nonexistent_file(self, cli_runner, quartet_files, tmp_path):
        result = cli_runner.invoke(app, [
            "loglik",
            "-s", str(tmp_path / "missing.fasta"),
            "-t", str(quartet_files["tree"]),
        ])

        assert result.exit_code != 0


class TestCLIPatterns:
    """Test 'patterns' command functionality."""

    def test_text_output(self, cli_runner, quartet_files):
        result = cli_runner.invoke(app, ["patterns", "-s", str(quartet_files["alignment"])])

        assert result.exit_code == 0
        assert "Sequences: 4" in result.stdout
        assert "Sites:     20" in result.stdout
        assert "Pattern\tWeight\tColumn" in result.stdout

    def test_json_output(self, cli_runner, quartet_files):
        result = cli_runner.invoke(app, [
            "patterns", "-s", str(quartet_files["alignment"]), "--format", "json",
        ])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["n_sequences"] == 4
        assert data["n_sites"] == 20
        assert sum(data["weights"]) == 20
        assert len(data["weights"]) == data["n_patterns"]
        assert len(data["indices"]) == 20
        assert max(data["indices"]) == data["n_patterns"] - 1


class TestCLISimulate:
    """Test 'simulate' command functionality."""

    def test_writes_fasta_and_parameters(self, cli_runner, quartet_files, tmp_path):
        output = tmp_path / "sim.fasta"

        result = cli_runner.invoke(app, [
            "simulate",
            "-t", str(quartet_files["tree"]),
            "-o", str(output),
            "-l", "120",
            "-m", "GTR",
            "--gamma", "4",
            "--seed", "42",
        ])

        assert result.exit_code == 0
        assert "Simulated 4 sequences x 120 sites" in result.stdout

        lines = output.read_text().split()
        headers = [line for line in lines if line.startswith(">")]
        assert sorted(headers) == [">A", ">B", ">C", ">D"]
        assert len("".join(lines[lines.index(">A") + 1:lines.index(">B")])) == 120

        params = json.loads((tmp_path / "sim.params.json").read_text())
        assert params["seed"] == 42
        assert params["n_sites"] == 120
        assert sum(params["site_classes"]) == 120
        assert len(params["site_classes"]) == 4

    def test_seed_reproducible(self, cli_runner, quartet_files, tmp_path):
        outputs = []
        for name in ("first.fasta", "second.fasta"):
            output = tmp_path / name
            result = cli_runner.invoke(app, [
                "simulate", "-t", str(quartet_files["tree"]), "-o", str(output),
                "-l", "50", "--seed", "7", "--quiet",
            ])
            assert result.exit_code == 0
            assert result.stdout == ""
            outputs.append(output.read_text())

        assert outputs[0] == outputs[1]

    def test_simulated_alignment_round_trips_through_loglik(self, cli_runner, quartet_files, tmp_path):
        output = tmp_path / "sim.fasta"
        cli_runner.invoke(app, [
            "simulate", "-t", str(quartet_files["tree"]), "-o", str(output), "-l", "200", "--seed", "1",
        ])

        result = cli_runner.invoke(app, [
            "loglik", "-s", str(output), "-t", str(quartet_files["tree"]), "--format", "json",
        ])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["n_sites"] == 200
