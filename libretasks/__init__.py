"""libretasks — Pure-Python model loading and post-processing for on-device ML tasks."""

from .errors import LibreTasksError, ParseError, InconsistentError, ArgumentError
from .model_resource import ModelResource, load_model, load_model_file
from .options import BaseTaskOptions, ClassifierOptions, HandDetectorOptions
from .engine import InferenceEngine, CallableEngine
from .classifier import Classifier, ClassifierSession
from .object_detector import ObjectDetector, ObjectDetectorSession
from .hand_detector import HandDetector, HandDetectorSession

__all__ = ["LibreTasksError", "ParseError", "InconsistentError", "ArgumentError",
           "ModelResource", "load_model", "load_model_file",
           "BaseTaskOptions", "ClassifierOptions", "HandDetectorOptions",
           "InferenceEngine", "CallableEngine",
           "Classifier", "ClassifierSession", "ObjectDetector", "ObjectDetectorSession",
           "HandDetector", "HandDetectorSession"]
