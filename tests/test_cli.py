import pytest

from apex_cpu_sim import main

PROGRAM = "MOVC,R0,#5\nMOVC,R1,#10\nADD,R2,R0,R1\nHALT\n"


@pytest.fixture
def program_file(tmp_path):
    path = tmp_path / "input.asm"
    path.write_text(PROGRAM)
    return str(path)


def test_demo_program_passes_its_checks(capsys):
    assert main([]) == 0
    out = capsys.readouterr().out
    assert "Simulation Complete, cycles = 18 instructions = 12" in out
    assert "All checks passed" in out
    assert "✗" not in out


def test_simulate_prints_final_state(program_file, capsys):
    assert main([program_file, "simulate"]) == 0
    out = capsys.readouterr().out
    assert "Loaded 4 instructions" in out
    assert "Simulation Complete, cycles = 8 instructions = 4" in out
    assert "R[2 ]  Value=15" in out
    assert "MEM[0]  Data Value=0" in out
    assert "Clock Cycle #" not in out


def test_display_traces_every_cycle(program_file, capsys):
    assert main([program_file, "display"]) == 0
    out = capsys.readouterr().out
    assert "Clock Cycle #: 7" in out
    assert "Decode/RF      : pc(4008) ADD,R2,R0,R1" in out


def test_cycle_budget_reports_stopped(program_file, capsys):
    assert main([program_file, "simulate", "--cycles", "3"]) == 0
    out = capsys.readouterr().out
    assert "Simulation Stopped, cycles = 3 instructions = 0" in out


def test_single_step_quit(program_file, capsys, monkeypatch):
    monkeypatch.setattr("builtins.input", lambda prompt="": "q")
    assert main([program_file, "single_step"]) == 0
    out = capsys.readouterr().out
    assert "Simulation Stopped, cycles = 1 instructions = 0" in out


def test_missing_program_is_an_error(tmp_path, capsys):
    assert main([str(tmp_path / "nope.asm")]) == 1
    assert "error: cannot read program" in capsys.readouterr().err


def test_binary_program_is_an_error(tmp_path, capsys):
    path = tmp_path / "prog.bin"
    path.write_bytes(b"\xff\xfe\x00\x01")
    assert main([str(path)]) == 1
    assert "error: " in capsys.readouterr().err


def test_single_step_traces_stages(program_file, capsys, monkeypatch):
    monkeypatch.setattr("builtins.input", lambda prompt="": "q")
    assert main([program_file, "single_step"]) == 0
    assert "Fetch          : pc(4000) MOVC,R0,#5" in capsys.readouterr().out


def test_pipeline_fault_is_an_error(tmp_path, capsys):
    path = tmp_path / "nohalt.asm"
    path.write_text("MOVC,R0,#1\n")
    assert main([str(path)]) == 1
    assert "outside the instruction table" in capsys.readouterr().err


def test_unknown_function_is_a_usage_error(program_file):
    with pytest.raises(SystemExit) as excinfo:
        main([program_file, "turbo"])
    assert excinfo.value.code == 2
