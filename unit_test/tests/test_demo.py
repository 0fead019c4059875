"""
Unit tests for the command-line demo.
"""
import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest import mock

import numpy as np
import torch
from PIL import Image

from fixtures import FixedOutputNet, make_prediction
from humanvision import demo
from humanvision.facedetector import BlazeFaceModel
from humanvision.human import Human


def make_human() -> Human:
    human = Human({'backend': 'cpu', 'warmup': 'none'})
    human.device = torch.device('cpu')
    human.models['face'] = BlazeFaceModel(FixedOutputNet(make_prediction()), human.config)
    return human


class TestArgs(unittest.TestCase):

    def test_defaults(self):
        args = demo.parse_args([])
        self.assertIsNone(args.input)
        self.assertIsNone(args.weights)
        self.assertFalse(args.verbose)

    def test_build_config_from_flags(self):
        args = demo.parse_args([
            'face.jpg', '--weights', 'w.pth', '-t', '0.5', '--max-faces', '2', '--backend', 'cpu', '-v'
        ])
        config = demo.build_config(args)

        self.assertTrue(config['debug'])
        self.assertEqual(config['backend'], 'cpu')
        self.assertEqual(
            config['face']['detector'],
            {'modelPath': 'w.pth', 'scoreThreshold': 0.5, 'maxFaces': 2}
        )

    def test_build_config_from_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'config.json')
            with open(path, 'w') as f:
                json.dump({'face': {'detector': {'iouThreshold': 0.4}}, 'warmup': 'none'}, f)

            config = demo.build_config(demo.parse_args(['-c', path, '--max-faces', '1']))

        self.assertEqual(config['warmup'], 'none')
        self.assertEqual(config['face']['detector'], {'iouThreshold': 0.4, 'maxFaces': 1})


class TestFormatResults(unittest.TestCase):

    def test_no_result(self):
        self.assertEqual(demo.format_results(None), ["Results:", "  Face: N/A"])

    def test_empty_result(self):
        lines = demo.format_results({'face': [], 'persons': []})
        self.assertEqual(lines, ["Results:", "  Face: N/A", "Persons:", "  N/A"])

    def test_faces(self):
        face = {'id': 0, 'score': 0.98765, 'box': [1.0, 2.0, 3.0, 4.0], 'landmarks': [[0, 0]] * 6}
        lines = demo.format_results({'face': [face], 'persons': [{'id': 0, 'face': face, 'box': face['box']}]})

        self.assertEqual(lines[1], "  Face: #0 score:0.988 box:[1.0, 2.0, 3.0, 4.0] landmarks:6")
        self.assertEqual(lines[2], "Persons:")
        self.assertEqual(lines[3], "  #0: Face: score:0.988 box:[1.0, 2.0, 3.0, 4.0]")


class TestDetect(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.image_path = os.path.join(self.tmpdir.name, 'input.png')
        Image.fromarray(np.zeros((256, 512, 3), dtype=np.uint8)).save(self.image_path)
        self.human = make_human()

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_detect_prints_and_saves(self):
        output = os.path.join(self.tmpdir.name, 'annotated.png')
        stdout = io.StringIO()
        with redirect_stdout(stdout):
            result = demo.detect(self.human, self.image_path, output)

        self.assertEqual(len(result['face']), 2)
        printed = stdout.getvalue().splitlines()
        self.assertEqual(printed[0], "Results:")
        self.assertTrue(printed[1].startswith("  Face: #0 score:0.993"))
        self.assertIn("Persons:", printed)
        self.assertTrue(os.path.exists(output))

    def test_undecodable_file(self):
        path = os.path.join(self.tmpdir.name, 'broken.jpg')
        with open(path, 'wb') as f:
            f.write(b'not an image')
        self.assertIsNone(demo.detect(self.human, path))

    def test_detection_error(self):
        for error in (RuntimeError('device lost'), TypeError('bad input'), ValueError('bad shape')):
            with self.subTest(error=type(error).__name__):
                human = mock.Mock()
                human.detect.side_effect = error
                stdout = io.StringIO()
                with redirect_stdout(stdout):
                    self.assertIsNone(demo.detect(human, self.image_path))
                self.assertEqual(stdout.getvalue().splitlines(), ["Results:", "  Face: N/A"])


class TestMain(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.image_path = os.path.join(self.tmpdir.name, 'input.png')
        Image.fromarray(np.zeros((128, 128, 3), dtype=np.uint8)).save(self.image_path)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_missing_file(self):
        self.assertEqual(demo.main([os.path.join(self.tmpdir.name, 'missing.jpg')]), 1)

    def test_missing_weights(self):
        weights = os.path.join(self.tmpdir.name, 'missing.pth')
        self.assertEqual(demo.main([self.image_path, '--weights', weights, '--backend', 'cpu']), 1)

    @mock.patch('humanvision.demo.init')
    def test_detect_file(self, mock_init):
        mock_init.return_value = make_human()
        with redirect_stdout(io.StringIO()):
            self.assertEqual(demo.main([self.image_path]), 0)

    @mock.patch('humanvision.demo.init')
    def test_without_input_runs_warmup(self, mock_init):
        human = make_human()
        mock_init.return_value = human
        with redirect_stdout(io.StringIO()):
            self.assertEqual(demo.main([]), 0)
        self.assertIn('warmup', human.performance)
        self.assertEqual(human.config['warmup'], 'full')


if __name__ == "__main__":
    unittest.main()
