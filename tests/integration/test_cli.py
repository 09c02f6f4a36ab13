"""Integration tests for the arraylab command line."""

from __future__ import annotations

import json
import shlex
import sys

import pytest

import logging

from arraylab.cli import build_parser, log_level, main
from arraylab.manifest import clear_cache

PY = shlex.quote(sys.executable)


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    """Run each test from an empty directory with no scheduler variables."""
    monkeypatch.chdir(tmp_path)
    for var in (
        "SLURM_ARRAY_JOB_ID",
        "SLURM_ARRAY_TASK_ID",
        "ARRAYLAB_ARRAY_ID",
        "ARRAYLAB_INDEX_OFFSET",
    ):
        monkeypatch.delenv(var, raising=False)
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def samples(tmp_path):
    path = tmp_path / "samples.tsv"
    path.write_text("# read1\tread2\ns1_R1.fq\ts1_R2.fq\ns2_R1.fq\ts2_R2.fq\n")
    return path


def _error_line(stderr: str) -> str:
    lines = [line for line in stderr.splitlines() if line.startswith("arraylab: error:")]
    assert len(lines) == 1, stderr
    return lines[0]


class TestResolve:
    def test_tsv(self, samples, capsys):
        code = main(["resolve", "--manifest", str(samples), "--index", "2", "--base", "1"])

        assert code == 0
        assert capsys.readouterr().out == "s2_R1.fq\ts2_R2.fq\n"

    def test_json_with_names(self, samples, capsys):
        main(
            [
                "resolve", "-m", str(samples), "-i", "0", "--base", "0",
                "--fields", "read1,read2", "--format", "json",
            ]
        )

        assert json.loads(capsys.readouterr().out) == {
            "read1": "s1_R1.fq",
            "read2": "s1_R2.fq",
        }

    def test_region(self, tmp_path, capsys):
        bed = tmp_path / "r.bed"
        bed.write_text("chr1\t0\t100000\n")

        main(["resolve", "-m", str(bed), "-i", "1", "--base", "1", "--fields", "chrom,start,stop", "--format", "region"])

        assert capsys.readouterr().out.strip() == "chr1:1-100000"

    def test_out_of_range(self, samples, capsys):
        code = main(["resolve", "-m", str(samples), "-i", "3", "--base", "1"])

        assert code == 1
        line = _error_line(capsys.readouterr().err)
        assert line.startswith("arraylab: error: IndexOutOfRangeError:")
        assert "samples.tsv" in line

    def test_base_is_never_guessed(self, samples, capsys):
        code = main(["resolve", "-m", str(samples), "-i", "1"])

        assert code == 1
        assert "ConfigurationError" in _error_line(capsys.readouterr().err)

    def test_base_from_config(self, tmp_path, samples, capsys):
        (tmp_path / ".arraylab.toml").write_text("[defaults]\nindex_base = 0\n")

        code = main(["resolve", "-m", str(samples), "-i", "1"])

        assert code == 0
        assert capsys.readouterr().out.startswith("s2_R1.fq")

    def test_missing_manifest(self, tmp_path, capsys):
        code = main(["resolve", "-m", str(tmp_path / "nope.tsv"), "-i", "1", "--base", "1"])

        assert code == 1
        assert "IOError" in _error_line(capsys.readouterr().err)


class TestWindow:
    def test_writes_intervals(self, tmp_path, capsys):
        lengths = tmp_path / "genome.txt"
        lengths.write_text("chr1\t250000\n")
        out = tmp_path / "regions.bed"

        code = main(["window", "--lengths", str(lengths), "--size", "100000", "--out", str(out)])

        assert code == 0
        data = [line for line in out.read_text().splitlines() if not line.startswith("#")]
        assert data == [
            "chr1\t0\t100000",
            "chr1\t100000\t200000",
            "chr1\t200000\t250000",
        ]
        assert "3 intervals" in capsys.readouterr().out

    def test_invalid_size(self, tmp_path, capsys):
        lengths = tmp_path / "genome.txt"
        lengths.write_text("chr1\t250000\n")

        code = main(["window", "-l", str(lengths), "-s", "0", "-o", str(tmp_path / "r.bed")])

        assert code == 1
        assert "InvalidWindowSizeError" in _error_line(capsys.readouterr().err)


class TestPlan:
    def test_directive(self, capsys):
        code = main(["plan", "--count", "791", "--concurrency", "20", "--base", "1"])

        assert code == 0
        assert capsys.readouterr().out.strip() == "#SBATCH --array=1-791%20"

    def test_empty_plan(self, capsys):
        code = main(["plan", "--count", "0", "--concurrency", "20", "--base", "1"])

        assert code == 1
        assert "EmptyPlanError" in _error_line(capsys.readouterr().err)

    def test_invalid_concurrency(self, capsys):
        code = main(["plan", "--count", "5", "--concurrency", "0", "--base", "1"])

        assert code == 1
        assert "InvalidConcurrencyError" in _error_line(capsys.readouterr().err)

    def test_json_from_manifest(self, samples, capsys):
        main(["plan", "--manifest", str(samples), "-k", "4", "--base", "0", "--json"])

        data = json.loads(capsys.readouterr().out)
        assert data["task_count"] == 2
        assert data["array_range"] == "0-1%4"
        assert len(data["manifest_fingerprint"]) == 16

    def test_sharded_directives(self, capsys):
        main(["plan", "-n", "250", "-k", "10", "--base", "1", "--max-array-size", "100"])

        assert capsys.readouterr().out.splitlines() == [
            "#SBATCH --array=1-99%10",
            "#SBATCH --array=1-99%10",
            "#SBATCH --array=1-52%10",
        ]

    def test_script_uses_environment_profile(self, tmp_path, samples):
        (tmp_path / ".arraylab.toml").write_text(
            "[project]\n"
            'default_env = "cluster"\n'
            "[environments.cluster]\n"
            'type = "slurm"\n'
            'partition = "short"\n'
            'modules = ["bwa/0.7.17"]\n'
        )
        scripts = tmp_path / "scripts"

        code = main(
            [
                "plan", "-m", str(samples), "-k", "2", "--base", "1",
                "--script-dir", str(scripts),
                "--template", "bwa mem ref.fa ${col1} ${col2}",
                "--out-dir", str(tmp_path / "out"),
                "--job-name", "align",
            ]
        )

        assert code == 0
        script = (scripts / "align.sbatch").read_text()
        assert "#SBATCH --partition=short" in script
        assert "#SBATCH --array=1-2%2" in script
        assert "module load bwa/0.7.17" in script
        assert "arraylab run --manifest" in script

    def test_plan_command_survives_parsing(self):
        args = build_parser().parse_args(["plan", "-n", "3", "-k", "1", "--base", "1"])

        assert args.command == "plan"
        assert args.task_command is None

    def test_script_with_explicit_command(self, tmp_path, capsys):
        scripts = tmp_path / "scripts"

        code = main(
            [
                "plan", "-n", "3", "-k", "1", "--base", "0",
                "--script-dir", str(scripts), "--command", "echo $SLURM_ARRAY_TASK_ID",
            ]
        )

        assert code == 0
        assert capsys.readouterr().out.strip() == "#SBATCH --array=0-2%1"
        lines = (scripts / "arraylab.sbatch").read_text().splitlines()
        assert lines[-1] == "echo $SLURM_ARRAY_TASK_ID"

    def test_script_needs_command(self, tmp_path, capsys):
        code = main(["plan", "-n", "3", "-k", "1", "--base", "1", "--script-dir", str(tmp_path)])

        assert code == 1
        assert "ConfigurationError" in _error_line(capsys.readouterr().err)


class TestRun:
    TEMPLATE = f"{PY} -c 'import sys; print(sys.argv[1]); sys.exit(len(sys.argv[1]) % 2)' ${{col1}}"

    def test_explicit_index(self, samples, tmp_path):
        out = tmp_path / "out"

        code = main(
            [
                "run", "-m", str(samples), "-i", "1", "--base", "1",
                "--template", self.TEMPLATE, "--out-dir", str(out), "--array-id", "88",
            ]
        )

        assert code == 0
        assert (out / "88_1.out").read_text().strip() == "s1_R1.fq"

    def test_index_from_scheduler(self, samples, tmp_path, monkeypatch):
        monkeypatch.setenv("SLURM_ARRAY_JOB_ID", "1234")
        monkeypatch.setenv("SLURM_ARRAY_TASK_ID", "1")
        monkeypatch.setenv("ARRAYLAB_INDEX_OFFSET", "1")
        out = tmp_path / "out"

        code = main(
            ["run", "-m", str(samples), "--base", "1", "-t", self.TEMPLATE, "-o", str(out)]
        )

        assert code == 0
        assert (out / "1234_2.out").read_text().strip() == "s2_R1.fq"

    def test_exit_code_passthrough(self, tmp_path, capsys):
        manifest = tmp_path / "m.txt"
        manifest.write_text("odd\n")

        code = main(
            [
                "run", "-m", str(manifest), "-i", "0", "--base", "0",
                "-t", self.TEMPLATE, "-o", str(tmp_path / "out"), "--array-id", "5",
            ]
        )

        assert code == 1
        assert "arraylab: error:" not in capsys.readouterr().err

    def test_missing_array_id(self, samples, tmp_path, capsys):
        code = main(
            ["run", "-m", str(samples), "-i", "1", "--base", "1", "-t", "true", "-o", str(tmp_path)]
        )

        assert code == 1
        assert "ConfigurationError" in _error_line(capsys.readouterr().err)

    def test_missing_task_id(self, samples, tmp_path, capsys, monkeypatch):
        monkeypatch.setenv("SLURM_ARRAY_JOB_ID", "1234")

        code = main(["run", "-m", str(samples), "--base", "1", "-t", "true", "-o", str(tmp_path)])

        assert code == 1
        assert "SLURM_ARRAY_TASK_ID" in _error_line(capsys.readouterr().err)

    def test_unopenable_log_file_is_one_error_line(self, samples, tmp_path, capsys):
        out = tmp_path / "out"
        (out / "5_1.out").mkdir(parents=True)

        code = main(
            [
                "run", "-m", str(samples), "-i", "1", "--base", "1",
                "-t", self.TEMPLATE, "-o", str(out), "--array-id", "5",
            ]
        )

        assert code == 1
        assert "CommandError" in _error_line(capsys.readouterr().err)

    def test_template_error(self, samples, tmp_path, capsys):
        code = main(
            [
                "run", "-m", str(samples), "-i", "1", "--base", "1",
                "-t", "tool ${read9}", "-o", str(tmp_path), "--array-id", "5",
            ]
        )

        assert code == 1
        assert "TemplateError" in _error_line(capsys.readouterr().err)

    def test_command_error(self, samples, tmp_path, capsys):
        code = main(
            [
                "run", "-m", str(samples), "-i", "1", "--base", "1",
                "-t", shlex.quote(str(tmp_path / "missing-tool")),
                "-o", str(tmp_path / "out"), "--array-id", "5",
            ]
        )

        assert code == 1
        assert "CommandError" in _error_line(capsys.readouterr().err)


class TestStatus:
    def test_reports_failures_and_missing(self, tmp_path, capsys):
        manifest = tmp_path / "m.txt"
        manifest.write_text("ab\nabc\nabcd\n")
        out = tmp_path / "out"
        for index in ("1", "2"):
            main(
                [
                    "run", "-m", str(manifest), "-i", index, "--base", "1",
                    "-t", TestRun.TEMPLATE, "-o", str(out), "--array-id", "7",
                ]
            )
        capsys.readouterr()

        code = main(
            ["status", "-o", str(out), "--array-id", "7", "--count", "3", "--base", "1", "--json"]
        )

        assert code == 1
        data = json.loads(capsys.readouterr().out)
        assert [r["state"] for r in data["results"]] == ["succeeded", "failed"]
        assert data["missing"] == [3]

    def test_all_succeeded(self, tmp_path, capsys):
        manifest = tmp_path / "m.txt"
        manifest.write_text("ab\n")
        out = tmp_path / "out"
        main(
            [
                "run", "-m", str(manifest), "-i", "0", "--base", "0",
                "-t", TestRun.TEMPLATE, "-o", str(out), "--array-id", "8",
            ]
        )

        code = main(["status", "-o", str(out), "--array-id", "8"])

        assert code == 0
        assert "Array Summary" in capsys.readouterr().out


class TestNoCommand:
    def test_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage: arraylab" in capsys.readouterr().out


class TestLogLevel:
    def test_quiet_by_default(self):
        assert log_level(False) == logging.WARNING

    def test_verbose(self):
        assert log_level(True) == logging.DEBUG
