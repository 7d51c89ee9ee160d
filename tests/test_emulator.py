import io

import pytest

from cpu import CycleResult, STACK_OFFSET, PROGRAM_OFFSET
from emulator import keys_from_string, main, render, run, run_frame


def test_keys_from_string():
    keys = keys_from_string("1V")
    assert keys[0x1] and keys[0xF]
    assert sum(keys) == 2


def test_keys_follow_keypad_layout():
    keys = keys_from_string("x")
    assert keys[0x0]
    assert sum(keys) == 1


def test_unmapped_key_rejected():
    with pytest.raises(ValueError):
        keys_from_string("p")


def test_render(chip8):
    chip8.framebuffer.set_pixel(0, 0, True)
    chip8.framebuffer.set_pixel(63, 31, True)
    lines = render(chip8).split('\n')
    assert len(lines) == 32
    assert lines[0] == '#' + ' ' * 63
    assert lines[31] == ' ' * 63 + '#'


def test_run_frame_low_res(load):
    chip8 = load(0x1200)
    assert run_frame(chip8, None) is CycleResult.CONTINUE
    assert chip8.timer_counter == 8


def test_run_frame_extended_runs_sixteen_cycles(load):
    chip8 = load(0x1200)
    chip8.extended_mode = True
    chip8.delay_timer = 5
    run_frame(chip8, None)
    assert chip8.delay_timer == 3


def test_run_frame_stops_on_exit(load):
    chip8 = load(0x00FD, 0x1202)
    assert run_frame(chip8, None) is CycleResult.EXIT
    assert chip8.pc == 0x202


def test_run_prints_changed_frames_and_beeps(load):
    chip8 = load(0x6005, 0xF018, 0xA000, 0xD015, 0x1208)
    out = io.StringIO()
    assert run(chip8, 2, None, out=out) is CycleResult.CONTINUE
    text = out.getvalue()
    assert text.count("beep") == 2
    assert text.count('-' * 64) == 1
    assert not chip8.drawFlag


def test_main_final_frame(tmp_path, capsys):
    rom = tmp_path / "glyph.ch8"
    rom.write_bytes(bytes.fromhex("600AA000D005"))
    assert main([str(rom), "--frames", "2", "--final-only"]) == 0
    lines = capsys.readouterr().out.split('\n')
    assert lines[10] == ' ' * 10 + '####' + ' ' * 50


def test_main_reports_fault(tmp_path, capsys):
    rom = tmp_path / "bad.ch8"
    rom.write_bytes(bytes.fromhex("FFFF"))
    assert main([str(rom), "--final-only"]) == 1
    assert "Unknown opcode FFFF" in capsys.readouterr().err


def test_main_rejects_large_program(tmp_path, capsys):
    rom = tmp_path / "big.ch8"
    rom.write_bytes(bytes(STACK_OFFSET - PROGRAM_OFFSET))
    assert main([str(rom)]) == 2
    assert "failed" in capsys.readouterr().err


def test_main_missing_file(tmp_path):
    assert main([str(tmp_path / "missing.ch8")]) == 2


def test_main_rejects_bad_keys(tmp_path):
    rom = tmp_path / "glyph.ch8"
    rom.write_bytes(bytes.fromhex("1200"))
    assert main([str(rom), "--keys", "!"]) == 2
