"""YOLOv8 output decoding, NMS, track matching, drawing and frame pipeline helpers."""

__version__ = "0.1.0"

__all__ = [
    "boxes",
    "layout",
    "model_wrapper",
    "pipeline",
    "postprocess",
    "result_processor",
    "tracking_adapter",
    "utils",
]