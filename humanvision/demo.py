"""
Command-line demo for humanvision.

Loads the models, runs detection on one image (local file or http(s) URL)
and prints the results. Without an input it runs the warmup images instead.

Usage:
    humanvision-demo photo.jpg
    humanvision-demo https://example.com/photo.jpg --output annotated.jpg
    humanvision-demo --weights model_weights/blazeface.pth
"""
import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, Optional

from humanvision.config import validate_config
from humanvision.human import Human
from humanvision.image import decode_image, draw_faces, image_to_tensor, is_url, read_input, save_image

log = logging.getLogger("humanvision")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Face detection demo: prints detected faces for an image",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "input",
        nargs="?",
        default=None,
        help="Input image path or URL (runs the warmup test when omitted)"
    )
    parser.add_argument(
        "--weights", "-w",
        type=str,
        default=None,
        help="Path or URL of the face detector weights (overrides face.detector.modelPath)"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="JSON file with configuration overrides"
    )
    parser.add_argument(
        "--backend",
        choices=["auto", "cpu", "cuda"],
        default=None,
        help="Device backend"
    )
    parser.add_argument(
        "--threshold", "-t",
        type=float,
        default=None,
        help="Detection score threshold"
    )
    parser.add_argument(
        "--max-faces",
        type=int,
        default=None,
        help="Maximum number of faces to return"
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Path to save an annotated copy of the input"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect config overrides from the --config file and flags."""
    config: Dict[str, Any] = {'debug': args.verbose, 'filter': {'enabled': True, 'flip': False}}
    if args.config:
        with open(args.config, 'r') as f:
            config.update(json.load(f))

    detector: Dict[str, Any] = {}
    if args.weights:
        detector['modelPath'] = args.weights
    if args.threshold is not None:
        detector['scoreThreshold'] = args.threshold
    if args.max_faces is not None:
        detector['maxFaces'] = args.max_faces
    if detector:
        config.setdefault('face', {}).setdefault('detector', {}).update(detector)
    if args.backend:
        config['backend'] = args.backend
    return config


def init(config: Dict[str, Any]) -> Human:
    """Create the Human instance and pre-load its models."""
    human = Human(config)
    log.info("humanvision: %s", human.version)
    log.info("Active configuration: %s", json.dumps(human.config))
    human.load()
    loaded = [name for name, model in human.models.items() if model is not None]
    log.info("Loaded: %s", loaded)
    log.info("Memory state: %s", human.memory())
    return human


def format_results(result: Optional[Dict[str, Any]]) -> list[str]:
    """Result lines as printed by the demo."""
    lines = ["Results:"]
    faces = result.get('face', []) if result else []
    if faces:
        for face in faces:
            box = ", ".join(f"{v:.1f}" for v in face['box'])
            lines.append(
                f"  Face: #{face['id']} score:{face['score']:.3f} box:[{box}] "
                f"landmarks:{len(face['landmarks'])}"
            )
    else:
        lines.append("  Face: N/A")

    if result:
        lines.append("Persons:")
        persons = result.get('persons', [])
        for person in persons:
            face = person['face']
            lines.append(
                f"  #{person['id']}: Face: score:{face['score']:.3f} "
                f"box:[{', '.join(f'{v:.1f}' for v in person['box'])}]"
            )
        if not persons:
            lines.append("  N/A")
    return lines


def detect(human: Human, source: str, output: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Load an image, run detection and print the results."""
    log.info("Loading image: %s", source)
    try:
        image = decode_image(read_input(source))
    except (IOError, ValueError) as err:
        log.error("%s", err)
        return None

    tensor = image_to_tensor(image)
    log.info("Processing: %s", list(tensor.shape))

    result = None
    try:
        result = human.detect(tensor)
    except (RuntimeError, TypeError, ValueError) as err:
        log.error("Detection failed: %s", err)
    del tensor

    for line in format_results(result):
        print(line)

    if result and output:
        save_image(output, draw_faces(image, result['face']))
        log.info("Saved visualization to: %s", output)

    return result


def test(human: Human) -> Optional[Dict[str, Any]]:
    """Run both warmup images."""
    result = None
    for mode in ('face', 'full'):
        log.info("Processing embedded warmup image: %s", mode)
        result = human.warmup({'warmup': mode})
        for line in format_results(result):
            print(line)
    return result


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s"
    )
    log.info("Current folder: %s", os.getcwd())

    if args.input is not None and not is_url(args.input) and not os.path.exists(args.input):
        log.error("File not found: %s", args.input)
        return 1

    try:
        config = validate_config(build_config(args))
        human = init(config)
    except (OSError, ValueError, RuntimeError) as err:
        log.error("Initialization failed: %s", err)
        return 1

    if args.input is None:
        log.warning("Parameters: <input image> missing")
        test(human)
        return 0

    result = detect(human, args.input, args.output)
    return 0 if result is not None else 1


if __name__ == "__main__":
    sys.exit(main())
