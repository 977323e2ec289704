"""
Annotate a single image from the command line.

    python Scripts/annotate_image.py --model Models/yolov8m.onnx --image Media/street.jpg --out out.jpg
"""

from yolo_annotate.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
