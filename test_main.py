#!/usr/bin/env python3
"""
Tests for the command-line entry point
"""
import logging

import numpy as np
import pytest

import inference.inference
from main import main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ("NPU_SEG_BACKEND", "NPU_SEG_OUTPUT_PATH", "NPU_SEG_PALETTE", "NPU_SEG_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    yield
    # main() installs a stdout handler bound to the captured stream
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_npu_seg", False):
            root.removeHandler(handler)


def test_missing_arguments_exit_non_zero(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code != 0


def test_unreadable_model(tmp_path, image_file, capsys):
    code = main([str(tmp_path / "missing.rknn"), str(image_file)])

    assert code == 1
    assert "Model file not found" in capsys.readouterr().out


def test_bad_config(tmp_path, model_file, image_file, capsys):
    code = main([str(model_file), str(image_file), "--palette", "{broken"])
    assert code == 1
    assert "Error" in capsys.readouterr().out


def test_successful_run(tmp_path, monkeypatch, make_session, model_file, image_file, capsys):
    scores = np.array([(10, 200), (200, 10), (5, 5), (0, 255)], dtype=np.uint8).reshape(2, 2, 2)
    monkeypatch.setattr(inference.inference, "create_session", lambda config: make_session(scores=scores))
    output = tmp_path / "out" / "mask.png"
    output.parent.mkdir()

    code = main([str(model_file), str(image_file), "--output", str(output),
                 "--input-shape", "2", "2", "3", "--save-metadata"])

    assert code == 0
    assert output.exists()
    assert (tmp_path / "out" / "mask.json").exists()
    out = capsys.readouterr().out
    assert "Inference time:" in out
    assert "Saved colored mask" in out


def test_device_failure_exit_code(tmp_path, monkeypatch, make_session, model_file, image_file):
    monkeypatch.setattr(inference.inference, "create_session",
                        lambda config: make_session(run_status=-1))

    code = main([str(model_file), str(image_file), "--output", str(tmp_path / "m.png")])

    assert code == 1
    assert not (tmp_path / "m.png").exists()


def test_comparison_format_error(tmp_path, monkeypatch, make_session, model_file, image_file, capsys):
    scores = np.array([(10, 200), (200, 10), (5, 5), (0, 255)], dtype=np.uint8).reshape(2, 2, 2)
    monkeypatch.setattr(inference.inference, "create_session", lambda config: make_session(scores=scores))

    code = main([str(model_file), str(image_file), "--output", str(tmp_path / "m.png"),
                 "--comparison", str(tmp_path / "cmp.xyz")])

    assert code == 1
    out = capsys.readouterr().out
    assert "Error: Failed to save comparison" in out
    assert "cmp.xyz" in out


def test_failure_reported_once(tmp_path, monkeypatch, make_session, model_file, image_file, capsys):
    monkeypatch.setattr(inference.inference, "create_session",
                        lambda config: make_session(run_status=-1))

    code = main([str(model_file), str(image_file), "--output", str(tmp_path / "m.png")])

    assert code == 1
    assert capsys.readouterr().out.count("rknn_run failed") == 1
