"""
Unit tests for the BlazeFace network.
"""
import os
import tempfile
import unittest
from pathlib import Path

import torch

from humanvision.blazeface import BlazeFaceNet, load_checkpoint, load_weights, setup_device


class TestBlazeFaceNet(unittest.TestCase):
    """Tests for BlazeFaceNet."""

    def setUp(self):
        """Set up test fixtures."""
        self.device = torch.device("cpu")
        self.model = BlazeFaceNet().to(self.device).eval()
        self.input_size = 128
        self.num_anchors = 896
        self.num_columns = 17  # 1 logit + 4 box + 12 landmark coords

    def test_forward_shape(self):
        """Forward pass produces one (B, 896, 17) tensor."""
        for batch_size in [1, 2]:
            with self.subTest(batch_size=batch_size):
                x = torch.randn(batch_size, 3, self.input_size, self.input_size)
                with torch.no_grad():
                    out = self.model(x)
                self.assertEqual(
                    out.shape,
                    torch.Size([batch_size, self.num_anchors, self.num_columns])
                )

    def test_forward_dtype(self):
        x = torch.randn(1, 3, self.input_size, self.input_size)
        with torch.no_grad():
            out = self.model(x)
        self.assertEqual(out.dtype, torch.float32)

    def test_model_parameters(self):
        """BlazeFace front should have around 100k parameters."""
        total_params = sum(p.numel() for p in self.model.parameters())
        self.assertGreater(total_params, 50000)
        self.assertLess(total_params, 500000)

    def test_load_pretrained_weights(self):
        """Load MediaPipe pretrained weights when they are available."""
        weights_path = Path("model_weights/blazeface.pth")
        if not weights_path.exists():
            self.skipTest(f"Weights file not found: {weights_path}")

        model = BlazeFaceNet()
        missing_keys, unexpected_keys = load_weights(model, str(weights_path))
        self.assertEqual(missing_keys, [])
        self.assertEqual(unexpected_keys, [])


class TestLoadWeights(unittest.TestCase):
    """Tests for load_weights formats."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.source = BlazeFaceNet()

    def tearDown(self):
        self.tmpdir.cleanup()

    def _assert_same_weights(self, model):
        for (name, a), (_, b) in zip(self.source.state_dict().items(), model.state_dict().items()):
            self.assertTrue(torch.equal(a, b), f"Mismatch in {name}")

    def test_raw_state_dict(self):
        path = os.path.join(self.tmpdir.name, "blazeface.pth")
        torch.save(self.source.state_dict(), path)

        model = BlazeFaceNet()
        missing, unexpected = load_weights(model, path)

        self.assertEqual(missing, [])
        self.assertEqual(unexpected, [])
        self._assert_same_weights(model)

    def test_training_checkpoint(self):
        path = os.path.join(self.tmpdir.name, "blazeface.ckpt")
        torch.save({'model_state_dict': self.source.state_dict(), 'epoch': 3}, path)

        model = BlazeFaceNet()
        missing, unexpected = load_weights(model, path)

        self.assertEqual(missing, [])
        self._assert_same_weights(model)

    def test_partial_state_dict_reports_missing(self):
        path = os.path.join(self.tmpdir.name, "partial.pth")
        state = {k: v for k, v in self.source.state_dict().items() if not k.startswith('regressor')}
        torch.save(state, path)

        missing, unexpected = load_weights(BlazeFaceNet(), path)

        self.assertIn('regressor_8.weight', missing)
        self.assertEqual(unexpected, [])

    def test_checkpoint_object(self):
        model = BlazeFaceNet()
        missing, _ = load_checkpoint(model, {'model_state_dict': self.source.state_dict()}, 'memory')

        self.assertEqual(missing, [])
        self._assert_same_weights(model)

    def test_unsupported_checkpoint(self):
        with self.assertRaises(ValueError):
            load_checkpoint(BlazeFaceNet(), [1, 2, 3], 'memory')


class TestSetupDevice(unittest.TestCase):

    def test_cpu(self):
        self.assertEqual(setup_device("cpu"), torch.device("cpu"))

    def test_auto(self):
        device = setup_device("auto")
        self.assertIn(device.type, ("cpu", "cuda"))

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            setup_device("wasm")


if __name__ == "__main__":
    unittest.main()
