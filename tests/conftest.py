"""Pytest configuration and shared fixtures for libretasks tests.

Models are fabricated with libretasks.tflite_builder: the post-processors
only look at a model's interface (tensors, quantization, metadata,
associated files), so operator-free models exercise every code path.
"""

import numpy as np
import pytest

from libretasks.tflite_builder import (
    FileDef,
    TensorDef,
    TensorMetadataDef,
    build_bundle,
    build_metadata,
    build_model,
    label_file,
    populate_associated_files,
)
from libretasks.metadata_parser import AssociatedFileType
from libretasks.tflite_parser import TensorType

CLASSIFIER_LABELS = ["cat", "dog", "bird", "fish"]
CLASSIFIER_LABELS_FR = ["chat", "chien", "oiseau", "poisson"]
DETECTOR_LABELS = ["person", "bicycle", "car"]

PALM_INPUT_SIZE = 192
PALM_NUM_ANCHORS = 2016


# ── Model factories ──────────────────────────────────────────────────────────

def make_classifier(labelled=True, output_type=TensorType.UINT8, scale=0.1, zero_point=0,
                    num_classes=4):
    """U8 image classifier with one quantized score output."""
    inputs_meta = [TensorMetadataDef(name="image", content="image", mean=[127.5], std=[127.5],
                                     stats_min=[-1.0], stats_max=[1.0])]
    files = []
    if labelled:
        files = [FileDef("labels.txt"), FileDef("labels_fr.txt", locale="fr")]
    outputs_meta = [TensorMetadataDef(name="probability", associated_files=files)]
    metadata = build_metadata(inputs=inputs_meta, outputs=outputs_meta,
                              name="test classifier", version="v1")
    out_scale = scale if output_type == TensorType.UINT8 else None
    model = build_model(
        [TensorDef("input", (1, 4, 4, 3), TensorType.UINT8, scale=1 / 128, zero_point=128)],
        [TensorDef("scores", (1, num_classes), output_type, scale=out_scale,
                   zero_point=zero_point)],
        metadata=metadata,
    )
    if not labelled:
        return model
    return populate_associated_files(model, {
        "labels.txt": label_file(CLASSIFIER_LABELS),
        "labels_fr.txt": label_file(CLASSIFIER_LABELS_FR),
    })


def make_detector(num_boxes=3, bounding_box_index=(1, 0, 3, 2), labelled=True):
    """SSD detector with in-graph post-processing (location/category/score/count)."""
    files = [FileDef("labelmap.txt", AssociatedFileType.TENSOR_VALUE_LABELS)] if labelled else []
    metadata = build_metadata(
        inputs=[TensorMetadataDef(name="image", content="image")],
        outputs=[
            TensorMetadataDef(name="location", content="bounding_box",
                              bounding_box_index=list(bounding_box_index), value_range=(2, 2)),
            TensorMetadataDef(name="category", associated_files=files),
            TensorMetadataDef(name="score"),
            TensorMetadataDef(name="number of detections"),
        ],
    )
    model = build_model(
        [TensorDef("normalized_input_image_tensor", (1, 8, 8, 3), TensorType.UINT8,
                   scale=1 / 128, zero_point=128)],
        [
            TensorDef("TFLite_Detection_PostProcess", (1, num_boxes, 4)),
            TensorDef("TFLite_Detection_PostProcess:1", (1, num_boxes)),
            TensorDef("TFLite_Detection_PostProcess:2", (1, num_boxes)),
            TensorDef("TFLite_Detection_PostProcess:3", (1,)),
        ],
        metadata=metadata,
    )
    if not labelled:
        return model
    return populate_associated_files(model, {"labelmap.txt": label_file(DETECTOR_LABELS)})


def make_palm_detector(size=PALM_INPUT_SIZE, num_anchors=PALM_NUM_ANCHORS, with_metadata=False):
    """Palm detection model: 18 regressors and one score logit per anchor."""
    metadata = None
    if with_metadata:
        metadata = build_metadata(
            inputs=[TensorMetadataDef(name="input_1", content="image")],
            outputs=[TensorMetadataDef(name="regressors"), TensorMetadataDef(name="classificators")],
        )
    return build_model(
        [TensorDef("input_1", (1, size, size, 3))],
        [TensorDef("Identity", (1, num_anchors, 18)), TensorDef("Identity_1", (1, num_anchors, 1))],
        metadata=metadata,
    )


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def classifier_bytes():
    return make_classifier()


@pytest.fixture
def unlabelled_classifier_bytes():
    return make_classifier(labelled=False)


@pytest.fixture
def detector_bytes():
    return make_detector()


@pytest.fixture
def palm_bytes():
    return make_palm_detector()


@pytest.fixture
def palm_bundle_bytes(palm_bytes):
    landmarks = build_model([TensorDef("input_1", (1, 224, 224, 3))],
                            [TensorDef("Identity", (1, 63))])
    return build_bundle({
        "hand_landmarks_detector.tflite": landmarks,
        "hand_detector.tflite": palm_bytes,
    })


@pytest.fixture
def rng():
    return np.random.default_rng(0)
