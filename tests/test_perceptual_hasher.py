import io

import pytest
from PIL import Image

from models.config import HashingConfig
from models.errors import HashUnavailable
from services.image_loader import to_data_url
from services.perceptual_hasher import PerceptualHasher, fingerprint_distance
from photo_fixtures import gradient_levels, make_blocks_image


@pytest.mark.unit
class TestPerceptualHasher:
    def setup_method(self):
        self.hasher = PerceptualHasher(HashingConfig())

    def test_fingerprint_shape(self, photo_factory):
        fp = self.hasher.hash(photo_factory())
        assert len(fp) == 16 * 16
        assert set(fp) <= set("0123456789abcdef")

    def test_known_levels_map_to_hex_digits(self):
        img = make_blocks_image(gradient_levels(0))
        fp = self.hasher.hash(img)
        # 第一行灰度为 8, 24, 40 ... 对应量化值 0, 1, 2 ...
        assert fp[:16] == "0123456789abcdef"
        assert fp[16:32] == "123456789abcdef0"

    def test_same_pixels_different_container(self, photo_factory):
        jpg = photo_factory("a.jpg", quality=95)
        png = photo_factory("a.png", fmt="PNG")
        assert self.hasher.hash(jpg) == self.hasher.hash(png)

    def test_recompression_keeps_fingerprint(self, photo_factory):
        hi = photo_factory("hi.jpg", quality=95)
        lo = photo_factory("lo.jpg", quality=80)
        assert self.hasher.hash(hi) == self.hasher.hash(lo)

    def test_different_content_differs(self, photo_factory):
        assert self.hasher.hash(photo_factory("a.jpg", seed=0)) != self.hasher.hash(photo_factory("b.jpg", seed=5))

    def test_data_url_and_bytes_sources(self, photo_factory):
        path = photo_factory()
        data = path.read_bytes()
        expected = self.hasher.hash(path)
        assert self.hasher.hash(data) == expected
        assert self.hasher.hash(to_data_url(data)) == expected

    def test_resolution_independent(self):
        img = make_blocks_image(gradient_levels(3))
        big = img.resize((512, 512), Image.Resampling.NEAREST)
        assert self.hasher.hash(img) == self.hasher.hash(big)

    def test_undecodable_raises_hash_unavailable(self, tmp_path):
        bad = tmp_path / "bad.jpg"
        bad.write_bytes(b"not an image at all")
        with pytest.raises(HashUnavailable):
            self.hasher.hash(bad)

    def test_missing_file_raises_hash_unavailable(self, tmp_path):
        with pytest.raises(HashUnavailable):
            self.hasher.hash(tmp_path / "missing.jpg")

    def test_rgba_and_palette_images(self):
        img = make_blocks_image(gradient_levels(1))
        rgb_fp = self.hasher.hash(img)
        buf = io.BytesIO()
        img.convert("RGBA").save(buf, format="PNG")
        assert self.hasher.hash(buf.getvalue()) == rgb_fp

    def test_eight_bit_quantisation_uses_two_digits(self):
        hasher = PerceptualHasher(HashingConfig(hash_size=8, quantize_bits=8))
        fp = hasher.hash(Image.new("RGB", (64, 64), (200, 200, 200)))
        assert len(fp) == 8 * 8 * 2
        assert fp[:2] == "c8"


@pytest.mark.unit
def test_fingerprint_distance():
    assert fingerprint_distance("abcd", "abcd") == 0
    assert fingerprint_distance("abcd", "abce") == 1
    assert fingerprint_distance("ab", "abcd") == 4
