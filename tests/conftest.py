import random

import pytest

from cpu import CPU


def words_to_bytes(*words):
    return b"".join(word.to_bytes(2, "big") for word in words)


@pytest.fixture
def chip8():
    return CPU(rng=random.Random(1234))


@pytest.fixture
def load(chip8):
    """Load a program given as 16-bit instruction words and return the CPU."""
    def _load(*words):
        chip8.load_program(words_to_bytes(*words))
        return chip8
    return _load


@pytest.fixture
def step(chip8):
    """Run count cycles and return the result of the last one."""
    def _step(count=1, keys=None):
        result = None
        for _ in range(count):
            result = chip8.cycle(keys)
        return result
    return _step


@pytest.fixture
def keypad():
    def _keypad(*pressed):
        keys = [False] * 16
        for key in pressed:
            keys[key] = True
        return keys
    return _keypad
