import io
import os
import tempfile
import unittest

from PIL import Image

from posters.file_store import PosterFileStore, infer_extension_from_url, sniff_image_extension


def _png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (2, 3), (10, 20, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


class PosterFileStoreTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.posters_dir = os.path.join(self.tmpdir.name, "posters")
        self.store = PosterFileStore(self.posters_dir)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_write_replaces_atomically(self):
        self.store.write("tmdb-1-w500.jpg", b"old")
        path = self.store.write("tmdb-1-w500.jpg", b"new")
        self.assertEqual(path, os.path.join(self.posters_dir, "tmdb-1-w500.jpg"))
        self.assertEqual(self.store.read_bytes("tmdb-1-w500.jpg"), b"new")
        self.assertEqual(os.listdir(self.posters_dir), ["tmdb-1-w500.jpg"])

    def test_failed_replace_removes_partial_file(self):
        os.makedirs(os.path.join(self.posters_dir, "blocked.jpg"))
        with self.assertRaises(OSError):
            self.store.write("blocked.jpg", b"data")
        self.assertFalse(os.path.exists(os.path.join(self.posters_dir, "blocked.jpg.part")))
        self.assertTrue(os.path.isdir(os.path.join(self.posters_dir, "blocked.jpg")))

    def test_rejects_names_outside_the_directory(self):
        with self.assertRaises(ValueError):
            self.store.write("../escape.jpg", b"data")
        self.assertIsNone(self.store.read_bytes("../escape.jpg"))
        self.assertFalse(self.store.exists("sub/dir.jpg"))

    def test_count_and_clear_ignore_directories(self):
        self.store.write("a.jpg", b"a")
        self.store.write("b.png", b"b")
        os.makedirs(os.path.join(self.posters_dir, "nested"))
        self.assertEqual(self.store.count(), 2)
        self.assertEqual(self.store.clear(), 2)
        self.assertEqual(self.store.count(), 0)

    def test_missing_directory_counts_zero(self):
        self.assertEqual(self.store.count(), 0)
        self.assertEqual(self.store.clear(), 0)


class ExtensionTests(unittest.TestCase):
    def test_sniffs_real_image_format(self):
        self.assertEqual(sniff_image_extension(_png_bytes()), ".png")
        self.assertIsNone(sniff_image_extension(b"not an image"))
        self.assertIsNone(sniff_image_extension(b""))

    def test_extension_from_url(self):
        self.assertEqual(infer_extension_from_url("https://img.example/p/cover.webp?x=1", ".jpg"), ".webp")
        self.assertEqual(infer_extension_from_url("https://img.example/p/cover", ".jpg"), ".jpg")
        self.assertEqual(infer_extension_from_url("/relative/cover.png", ".jpg"), ".jpg")


if __name__ == "__main__":
    unittest.main()
