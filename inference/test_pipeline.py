#!/usr/bin/env python3
"""
End-to-end tests for the segmentation pipeline
"""
import json
import time

import cv2
import numpy as np
import pytest

from common.config import PipelineConfig
from common.errors import (
    BindError, DecodeError, EncodeError, InferenceError, InvalidShapeError, LoadError,
    PaletteMismatchError
)
from common.tensor_types import TensorKind, TensorShape
from inference.inference import SegmentationPipeline

TWO_CLASS_SCORES = np.array([(10, 200), (200, 10), (5, 5), (0, 255)], dtype=np.uint8).reshape(2, 2, 2)


def make_pipeline(tmp_path, session, **config):
    config.setdefault('output_path', str(tmp_path / "seg_mask.png"))
    created = []

    def factory():
        created.append(session)
        return session

    pipeline = SegmentationPipeline(PipelineConfig(**config), session_factory=factory)
    return pipeline, created


def test_end_to_end(tmp_path, make_session, model_file, image_file):
    session = make_session(scores=TWO_CLASS_SCORES)
    pipeline, _ = make_pipeline(tmp_path, session)

    result = pipeline.run(str(model_file), str(image_file))

    assert result.mask.tolist() == [1, 0, 0, 1]
    assert result.pixels.tolist() == [0, 0, 0, 255, 0, 255, 255, 0, 255, 0, 0, 0]
    assert result.output_shape == TensorShape(2, 2, 2)
    written = cv2.cvtColor(cv2.imread(result.output_path), cv2.COLOR_BGR2RGB)
    np.testing.assert_array_equal(written.reshape(-1), result.pixels)

    # Red input image resized to the 2x2x3 model input
    assert session.last_input.shape == (2, 2, 3)
    assert (session.last_input[:, :, 0] == 255).all()

    assert result.metrics['classes'][1]['pixels'] == 2
    assert set(result.timings.as_dict()) == {'preprocess_ms', 'inference_ms', 'postprocess_ms'}


def test_call_order_and_cleanup(tmp_path, make_session, model_file, image_file):
    session = make_session(scores=TWO_CLASS_SCORES)
    pipeline, _ = make_pipeline(tmp_path, session)

    pipeline.run(str(model_file), str(image_file))

    calls = session.calls
    assert calls[0] == 'open'
    assert calls.index(('bind', TensorKind.INPUT)) < calls.index('run')
    assert calls.index(('bind', TensorKind.NATIVE_NHWC_OUTPUT)) < calls.index('run')
    assert calls[-3:] == ['free', 'free', 'close']
    assert len(session.freed) == 2
    assert not session.is_open


def test_unreadable_model_makes_no_device_calls(tmp_path, make_session, image_file):
    session = make_session()
    pipeline, created = make_pipeline(tmp_path, session)

    with pytest.raises(LoadError):
        pipeline.run(str(tmp_path / "missing.rknn"), str(image_file))

    assert created == []
    assert session.calls == []


def test_empty_model_file(tmp_path, make_session, image_file):
    model = tmp_path / "empty.rknn"
    model.write_bytes(b"")
    pipeline, created = make_pipeline(tmp_path, make_session())

    with pytest.raises(LoadError):
        pipeline.run(str(model), str(image_file))
    assert created == []


def test_input_released_when_output_bind_fails(tmp_path, make_session, model_file, image_file):
    session = make_session(fail={('bind', TensorKind.NATIVE_NHWC_OUTPUT)})
    pipeline, _ = make_pipeline(tmp_path, session)

    with pytest.raises(BindError):
        pipeline.run(str(model_file), str(image_file))

    input_buffers = [b for b in session.freed if b.size == TensorShape(2, 2, 3).size]
    assert len(input_buffers) == 1
    assert session.free_count(input_buffers[0]) == 1
    assert 'run' not in session.calls
    assert session.calls[-1] == 'close'


def test_inference_failure_writes_nothing(tmp_path, make_session, model_file, image_file):
    session = make_session(run_status=-1)
    pipeline, _ = make_pipeline(tmp_path, session)

    with pytest.raises(InferenceError):
        pipeline.run(str(model_file), str(image_file))

    assert not (tmp_path / "seg_mask.png").exists()
    assert len(session.freed) == 2
    assert session.calls[-1] == 'close'


def test_palette_mismatch_fails_before_run(tmp_path, make_session, model_file, image_file):
    session = make_session(output_shape=TensorShape(2, 2, 3))
    pipeline, _ = make_pipeline(tmp_path, session, palette="binary")

    with pytest.raises(PaletteMismatchError):
        pipeline.run(str(model_file), str(image_file))

    assert 'run' not in session.calls
    assert len(session.freed) == 1
    assert session.calls[-1] == 'close'


def test_multiclass_palette(tmp_path, make_session, model_file, image_file):
    scores = np.zeros((2, 2, 3), dtype=np.uint8)
    scores[0, 0, 2] = 9
    session = make_session(output_shape=TensorShape(2, 2, 3), scores=scores)
    palette = {0: (0, 0, 0), 1: (0, 255, 0), 2: (0, 0, 255)}
    pipeline, _ = make_pipeline(tmp_path, session, palette=palette)

    result = pipeline.run(str(model_file), str(image_file))

    assert result.mask.tolist() == [2, 0, 0, 0]
    assert result.pixels[:3].tolist() == [0, 0, 255]


def test_unreadable_image(tmp_path, make_session, model_file):
    session = make_session()
    pipeline, _ = make_pipeline(tmp_path, session)

    with pytest.raises(LoadError):
        pipeline.run(str(model_file), str(tmp_path / "missing.jpg"))

    assert session.calls[-1] == 'close'
    assert 'create_buffer' not in session.calls


def test_undecodable_image(tmp_path, make_session, model_file):
    garbage = tmp_path / "garbage.jpg"
    garbage.write_bytes(b"not an image")
    pipeline, _ = make_pipeline(tmp_path, make_session())

    with pytest.raises(DecodeError):
        pipeline.run(str(model_file), str(garbage))


def test_degenerate_output_shape(tmp_path, make_session, model_file, image_file):
    session = make_session(output_shape=TensorShape(0, 2, 2))
    pipeline, _ = make_pipeline(tmp_path, session)

    with pytest.raises(InvalidShapeError):
        pipeline.run(str(model_file), str(image_file))
    assert session.calls[-1] == 'close'


def test_session_load_failure_closes_session(tmp_path, make_session, model_file, image_file):
    session = make_session(fail={'load'})
    pipeline, _ = make_pipeline(tmp_path, session)

    with pytest.raises(LoadError):
        pipeline.run(str(model_file), str(image_file))
    assert session.calls == ['open', 'close']


def test_metadata_and_comparison(tmp_path, make_session, model_file, image_file):
    session = make_session(scores=TWO_CLASS_SCORES)
    pipeline, _ = make_pipeline(tmp_path, session, save_metadata=True,
                                comparison_path=str(tmp_path / "comparison.png"))

    result = pipeline.run(str(model_file), str(image_file))

    metadata = json.loads((tmp_path / "seg_mask.json").read_text())
    assert metadata['output_shape'] == [2, 2, 2]
    assert metadata['input_shape'] == [2, 2, 3]
    assert metadata['metrics']['total_pixels'] == 4
    assert (tmp_path / "comparison.png").exists()
    assert result.comparison_path == str(tmp_path / "comparison.png")


def test_unsupported_comparison_format(tmp_path, make_session, model_file, image_file):
    session = make_session(scores=TWO_CLASS_SCORES)
    pipeline, _ = make_pipeline(tmp_path, session, comparison_path=str(tmp_path / "cmp.xyz"))

    with pytest.raises(EncodeError):
        pipeline.run(str(model_file), str(image_file))

    assert (tmp_path / "seg_mask.png").exists()
    assert session.calls[-1] == 'close'


def test_metadata_write_failure(tmp_path, make_session, model_file, image_file):
    (tmp_path / "seg_mask.json").mkdir()
    session = make_session(scores=TWO_CLASS_SCORES)
    pipeline, _ = make_pipeline(tmp_path, session, save_metadata=True)

    with pytest.raises(EncodeError):
        pipeline.run(str(model_file), str(image_file))


def test_timeout_leaves_runtime_to_the_running_call(tmp_path, make_session, model_file, image_file):
    session = make_session(scores=TWO_CLASS_SCORES, run_delay=0.3)
    pipeline, _ = make_pipeline(tmp_path, session, timeout=0.05)

    with pytest.raises(InferenceError):
        pipeline.run(str(model_file), str(image_file))

    assert not session.is_open
    assert len(session.freed) == 2
    assert session.teardowns == []

    deadline = time.monotonic() + 5.0
    while not session.teardowns and time.monotonic() < deadline:
        time.sleep(0.01)
    assert session.teardowns == [False]
    assert not (tmp_path / "seg_mask.png").exists()
