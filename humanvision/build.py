"""
Build script: exports the face detector for every deployment target.

Each target group holds one or more targets; a target's options are
merged over CONFIG['common'] and CONFIG['debug'] or CONFIG['production']:

    cpu   torchscript   TorchScript traced on CPU
    gpu   torchscript   TorchScript traced on CUDA (skipped without CUDA)
    onnx  static        ONNX, fixed batch of 1
    onnx  dynamic       ONNX, dynamic batch axis

Every artifact gets a JSON sidecar describing its input/output layout and
anchors. Production builds then emit type stubs, update the changelog and
generate API docs.

Usage:
    python -m humanvision.build --weights model_weights/blazeface.pth
    python -m humanvision.build --dev
"""
import argparse
import hashlib
import importlib
import json
import logging
import os
import pkgutil
import pydoc
import subprocess
import sys
import threading
from collections import OrderedDict
from typing import Any, Dict, Optional

import torch
import torch.nn as nn

from humanvision.anchors import count_anchors
from humanvision.blazeface import BlazeFaceNet, load_weights
from humanvision.config import ANCHORS_CONFIG, NUM_LANDMARKS, merge_config
from humanvision.version import __version__

log = logging.getLogger("humanvision.build")

LOG_FILE = 'build.log'
PACKAGE = 'humanvision'
RETRY_DELAY = 0.5

# =============================================================================
# Build configuration
# =============================================================================
CONFIG = {
    'common': {
        'input_size': 128,
        'opset_version': 17,
        'metafile': True,
    },
    'debug': {
        'optimize': False,
        'validate': False,
    },
    'production': {
        'optimize': True,
        'validate': True,
    },
}

TARGETS = {
    'cpu': {
        'torchscript': {
            'format': 'torchscript',
            'device': 'cpu',
            'outfile': 'dist/blazeface.cpu.pt',
        },
    },
    'gpu': {
        'torchscript': {
            'format': 'torchscript',
            'device': 'cuda',
            'outfile': 'dist/blazeface.cuda.pt',
        },
    },
    'onnx': {
        'static': {
            'format': 'onnx',
            'device': 'cpu',
            'outfile': 'dist/blazeface.onnx',
            'dynamic_batch': False,
        },
        'dynamic': {
            'format': 'onnx',
            'device': 'cpu',
            'outfile': 'dist/blazeface.dynamic.onnx',
            'dynamic_batch': True,
        },
    },
}

_build_lock = threading.Lock()


# =============================================================================
# Export
# =============================================================================

def _sha256(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(1 << 20), b''):
            digest.update(chunk)
    return digest.hexdigest()


def _write_metafile(outfile: str, options: Dict[str, Any]) -> str:
    """JSON sidecar with everything a consumer needs to decode the artifact."""
    size = options['input_size']
    meta = {
        'version': __version__,
        'format': options['format'],
        'file': os.path.basename(outfile),
        'sha256': _sha256(outfile),
        'input': {'name': 'input', 'shape': ['batch' if options.get('dynamic_batch') else 1, 3, size, size],
                  'range': [-1.0, 1.0]},
        'output': {'name': 'output', 'shape': ['batch' if options.get('dynamic_batch') else 1,
                                               count_anchors(size, size), 1 + 4 + NUM_LANDMARKS * 2],
                   'layout': ['logit', 'cx', 'cy', 'w', 'h'] + [f'lm{i}{axis}' for i in range(NUM_LANDMARKS)
                                                                for axis in ('x', 'y')]},
        'anchors': ANCHORS_CONFIG,
    }
    path = os.path.splitext(outfile)[0] + '.json'
    with open(path, 'w') as f:
        json.dump(meta, f, indent=2)
    return path


def _validate_onnx(outfile: str, example: torch.Tensor, expected: torch.Tensor) -> None:
    """Run the exported graph with onnxruntime and compare against PyTorch."""
    import onnxruntime as ort

    session = ort.InferenceSession(outfile, providers=['CPUExecutionProvider'])
    (output,) = session.run(None, {'input': example.cpu().numpy()})
    if tuple(output.shape) != tuple(expected.shape):
        raise RuntimeError(f"ONNX output shape {output.shape} != PyTorch {tuple(expected.shape)}")
    max_diff = float(abs(torch.from_numpy(output) - expected.cpu()).max())
    if max_diff > 1e-3:
        raise RuntimeError(f"ONNX output differs from PyTorch by {max_diff:.6f}")


def export_target(model: nn.Module, options: Dict[str, Any], root: str = '.') -> Dict[str, Any]:
    """
    Export one target.

    Args:
        model: Network to export (eval mode is set here)
        options: Merged target options ('format', 'device', 'outfile', ...)
        root: Directory outfile is relative to

    Returns:
        Metafile dict: {'inputs': {tensor name: {'kind', 'bytes'}},
                        'outputs': {path: {'bytes'}}}
    """
    device = torch.device(options['device'])
    outfile = os.path.join(root, options['outfile'])
    os.makedirs(os.path.dirname(outfile) or '.', exist_ok=True)

    model = model.to(device).eval()
    size = options['input_size']
    example = torch.zeros(1, 3, size, size, device=device)

    with torch.no_grad():
        if options['format'] == 'torchscript':
            traced = torch.jit.trace(model, example)
            if options.get('optimize'):
                traced = torch.jit.optimize_for_inference(torch.jit.freeze(traced))
            torch.jit.save(traced, outfile)
        elif options['format'] == 'onnx':
            dynamic_axes = {'input': {0: 'batch'}, 'output': {0: 'batch'}} if options.get('dynamic_batch') else None
            torch.onnx.export(
                model, (example,), outfile,
                input_names=['input'],
                output_names=['output'],
                opset_version=options['opset_version'],
                do_constant_folding=bool(options.get('optimize')),
                dynamic_axes=dynamic_axes,
                dynamo=False,
            )
            if options.get('validate'):
                _validate_onnx(outfile, example, model(example))
        else:
            raise ValueError(f"Unknown export format: {options['format']}")

    inputs = OrderedDict()
    for name, param in model.named_parameters():
        inputs[name] = {'kind': 'parameter', 'bytes': param.numel() * param.element_size()}
    for name, buf in model.named_buffers():
        inputs[name] = {'kind': 'buffer', 'bytes': buf.numel() * buf.element_size()}

    outputs = OrderedDict()
    outputs[outfile] = {'bytes': os.path.getsize(outfile)}
    if options.get('metafile'):
        metafile = _write_metafile(outfile, options)
        outputs[metafile] = {'bytes': os.path.getsize(metafile)}

    return {'inputs': inputs, 'outputs': outputs}


def get_stats(meta: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Summarize a metafile: tensor counts and bytes, output bytes and files."""
    stats: Dict[str, Any] = {}
    if meta and meta.get('inputs') and meta.get('outputs'):
        for val in meta['inputs'].values():
            if val['kind'] == 'buffer':
                stats['buffers'] = stats.get('buffers', 0) + 1
                stats['bufferBytes'] = stats.get('bufferBytes', 0) + val['bytes']
            else:
                stats['parameters'] = stats.get('parameters', 0) + 1
                stats['parameterBytes'] = stats.get('parameterBytes', 0) + val['bytes']
        files = []
        for key, val in meta['outputs'].items():
            # sidecars are not counted as artifacts
            if not key.endswith('.json'):
                files.append(key)
                stats['outputBytes'] = stats.get('outputBytes', 0) + val['bytes']
        stats['outputFiles'] = ', '.join(files)
    return stats


# =============================================================================
# Types, changelog, docs
# =============================================================================

def compile_types(package: str = PACKAGE, outdir: str = 'types') -> None:
    """Generate .pyi type stubs for the package."""
    from mypy import stubgen

    log.info("Generate types: %s", package)
    stubgen.main(['-p', package, '-o', outdir])


def update_changelog(path: str = 'CHANGELOG.md') -> bool:
    """Rewrite the changelog from git history, grouped by commit date.

    Returns False (after a warning) outside a git checkout.
    """
    try:
        out = subprocess.run(
            ['git', 'log', '--date=short', '--pretty=format:%ad %s'],
            capture_output=True, text=True, check=True
        ).stdout
    except (OSError, subprocess.CalledProcessError) as err:
        log.warning("Changelog: git log unavailable, skipped (%s)", err)
        return False

    entries = OrderedDict()
    for line in out.splitlines():
        date, _, subject = line.partition(' ')
        if subject and not subject.startswith('Merge'):
            entries.setdefault(date, []).append(subject)

    lines = [f"# {PACKAGE} change log", "", f"## version {__version__}", ""]
    for date, subjects in entries.items():
        lines.append(f"### **{date}**")
        lines.extend(f"- {subject}" for subject in subjects)
        lines.append("")

    with open(path, 'w') as f:
        f.write('\n'.join(lines))
    log.info("Changelog: %s (%d days)", path, len(entries))
    return True


def generate_docs(package: str = PACKAGE, outdir: str = 'docs') -> list[str]:
    """Write one pydoc HTML page per module of the package."""
    log.info("Generate docs: %s", package)
    os.makedirs(outdir, exist_ok=True)

    pkg = importlib.import_module(package)
    names = [package] + [f"{package}.{m.name}" for m in pkgutil.iter_modules(pkg.__path__)]

    written = []
    for name in names:
        module = importlib.import_module(name)
        page = pydoc.html.page(pydoc.describe(module), pydoc.html.document(module, name))
        path = os.path.join(outdir, f"{name}.html")
        with open(path, 'w', encoding='utf-8') as f:
            f.write(page)
        written.append(path)
    return written


# =============================================================================
# Build
# =============================================================================

def load_model(weights_path: Optional[str]) -> nn.Module:
    """BlazeFace network with weights, or randomly initialized when no path is given."""
    model = BlazeFaceNet()
    if weights_path:
        if not os.path.exists(weights_path):
            raise FileNotFoundError(f"Model weights not found: {weights_path}")
        load_weights(model, weights_path)
    else:
        log.warning("No weights given, exporting a randomly initialized network")
    return model.eval()


def build(
    trigger: str,
    msg: str,
    dev: bool = False,
    weights_path: Optional[str] = None,
    root: str = '.',
    model: Optional[nn.Module] = None
) -> Optional[bool]:
    """
    Export every target, then (production only) types, changelog and docs.

    A build requested while another one runs is retried on a timer.

    Returns:
        True on success, False on error, None when deferred
    """
    if not _build_lock.acquire(blocking=False):
        log.info("Build: busy...")
        timer = threading.Timer(
            RETRY_DELAY, build, args=(trigger, msg, dev),
            kwargs={'weights_path': weights_path, 'root': root, 'model': model}
        )
        timer.daemon = True
        timer.start()
        return None

    try:
        mode = 'debug' if dev else 'production'
        log.info("Build: %s %s type: %s config: %s", msg, trigger, mode, CONFIG[mode])
        if model is None:
            model = load_model(weights_path)

        for group_name, group in TARGETS.items():
            for target_name, target_options in group.items():
                options = merge_config(CONFIG['common'], CONFIG[mode], target_options)
                if options['device'].startswith('cuda') and not torch.cuda.is_available():
                    log.warning("Build for: %s type: %s skipped, CUDA not available", group_name, target_name)
                    continue
                meta = export_target(model, options, root)
                log.info("Build for: %s type: %s: %s", group_name, target_name, get_stats(meta))

        if not dev:
            compile_types(PACKAGE, os.path.join(root, 'types'))
            update_changelog(os.path.join(root, 'CHANGELOG.md'))
            generate_docs(PACKAGE, os.path.join(root, 'docs'))
        return True
    except Exception as err:
        log.exception("Build error: %s", err)
        return False
    finally:
        _build_lock.release()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Export the face detector for all targets",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--weights", "-w", type=str, default="model_weights/blazeface.pth",
                        help="BlazeFace weights to export")
    parser.add_argument("--root", type=str, default=".", help="Output root directory")
    parser.add_argument("--dev", action="store_true",
                        help="Debug build: no optimization, no types/changelog/docs")
    parser.add_argument("--log-file", type=str, default=LOG_FILE, help="Build log file (truncated)")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    log_file = os.path.join(args.root, args.log_file)
    if os.path.exists(log_file):
        os.remove(log_file)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(), logging.FileHandler(log_file)]
    )
    log.info("%s %s build", PACKAGE, __version__)
    ok = build('all', 'startup', dev=args.dev, weights_path=args.weights, root=args.root)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
