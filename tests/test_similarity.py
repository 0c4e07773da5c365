"""Perceptual similarity gate."""

import numpy as np
import pytest
from PIL import Image

from presenter_studio.config import IDENTITY_REGIONS
from presenter_studio.models.placement import Region
from presenter_studio.services.similarity import fingerprint, fingerprint_similarity, passes_gate, similarity

from .conftest import make_image


@pytest.fixture
def image_a(tmp_path):
    return make_image(tmp_path / "a.png", seed=10)


@pytest.fixture
def image_b(tmp_path):
    return make_image(tmp_path / "b.png", seed=11)


class TestSimilarity:
    def test_identity(self, image_a):
        assert similarity(image_a, image_a, list(IDENTITY_REGIONS)) == 1.0

    def test_symmetric(self, image_a, image_b):
        regions = list(IDENTITY_REGIONS)
        assert similarity(image_a, image_b, regions) == similarity(image_b, image_a, regions)

    def test_unrelated_images_score_low(self, image_a, image_b):
        assert similarity(image_a, image_b, list(IDENTITY_REGIONS)) < 0.75

    def test_edit_outside_regions_is_invisible(self, tmp_path, image_a):
        """Only the torso band changes, so head and desk fingerprints match."""
        pixels = np.array(Image.open(image_a))
        pixels[90:125, :, :] = 255 - pixels[90:125, :, :]
        edited = tmp_path / "edited.png"
        Image.fromarray(pixels).save(edited)

        assert similarity(image_a, edited, list(IDENTITY_REGIONS)) == 1.0

    def test_accepts_bytes_and_pil_images(self, image_a):
        raw = image_a.read_bytes()
        with Image.open(image_a) as img:
            img.load()
            assert similarity(raw, img, list(IDENTITY_REGIONS)) == 1.0

    def test_undecodable_input_is_unmeasurable(self, image_a):
        assert similarity(b"not an image", image_a, list(IDENTITY_REGIONS)) is None

    def test_empty_regions_are_skipped(self, image_a, image_b):
        empty = Region("outside", x=1.0, y=1.0, width=0.0, height=0.0)
        assert similarity(image_a, image_b, [empty]) is None
        assert similarity(image_a, image_a, [empty, *IDENTITY_REGIONS]) == 1.0


class TestFingerprint:
    def test_is_64_bit(self, image_a):
        with Image.open(image_a) as img:
            value = fingerprint(img, Region("full", 0.0, 0.0, 1.0, 1.0))
        assert 0 <= value < 2 ** 64

    def test_brighter_left_sets_every_bit(self):
        gradient = np.tile(np.linspace(255, 0, 90, dtype=np.uint8), (80, 1))
        img = Image.fromarray(gradient, "L")
        assert fingerprint(img, Region("full", 0.0, 0.0, 1.0, 1.0)) == 2 ** 64 - 1

    def test_hamming_similarity(self):
        assert fingerprint_similarity(0, 0) == 1.0
        assert fingerprint_similarity(0, 2 ** 64 - 1) == 0.0
        assert fingerprint_similarity(0b1111, 0) == 1 - 4 / 64


class TestGate:
    def test_below_minimum_fails(self):
        assert passes_gate(0.5, 0.75) is False

    def test_at_minimum_passes(self):
        assert passes_gate(0.75, 0.75) is True

    def test_unmeasurable_passes(self):
        assert passes_gate(None, 0.75) is True
