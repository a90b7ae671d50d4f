import unittest

from posters import categories
from posters.titles import (
    clean_title,
    count_significant_token_overlap,
    evaluate_ambiguity,
    extract_isbn,
    normalize_title,
    parse_audio_query,
    sanitize_game_query,
    significant_tokens,
)


class TitleNormalizationTests(unittest.TestCase):
    def test_normalize_strips_release_noise(self):
        self.assertEqual(normalize_title("The.Office.US.S01E02.1080p.WEB-DL"), "the office us")
        self.assertEqual(normalize_title("Amélie (2001) [MULTi]"), "amelie")
        self.assertEqual(normalize_title("Dark Saison 2 x265"), "dark")
        self.assertEqual(normalize_title("   "), "")

    def test_clean_title_trims_trailing_punctuation_and_accents(self):
        self.assertEqual(clean_title("Léon - "), "Leon")
        self.assertEqual(clean_title("Astérix..."), "Asterix")
        self.assertEqual(clean_title(None), "")

    def test_significant_tokens_skip_stop_words(self):
        self.assertEqual(significant_tokens("The Lord of the Rings"), ["lord", "rings"])
        self.assertEqual(significant_tokens("Le Fabuleux Destin"), ["fabuleux", "destin"])
        self.assertEqual(count_significant_token_overlap("Lord of the Rings", "The Rings Lord"), 2)
        self.assertEqual(count_significant_token_overlap("Lord of the Rings", "Other", "Rings"), 1)


class AmbiguityTests(unittest.TestCase):
    def test_channel_name_is_likely_program(self):
        ambiguity = evaluate_ambiguity("tf1", "series", None)
        self.assertTrue(ambiguity.is_ambiguous)
        self.assertTrue(ambiguity.is_likely_channel_or_program)

    def test_short_title_is_letter_separated(self):
        ambiguity = evaluate_ambiguity("ca", "movie", None)
        self.assertTrue(ambiguity.is_likely_channel_or_program)
        self.assertIn("very-short", ambiguity.reasons)

    def test_common_title(self):
        ambiguity = evaluate_ambiguity("Red", "movie", 2010)
        self.assertTrue(ambiguity.is_common_title)
        self.assertTrue(ambiguity.is_ambiguous)
        self.assertEqual(ambiguity.significant_token_count, 1)

    def test_series_without_year_and_few_tokens(self):
        ambiguity = evaluate_ambiguity("lost", "series", None)
        self.assertTrue(ambiguity.is_ambiguous)
        self.assertFalse(ambiguity.is_common_title)
        self.assertIn("series-no-year-few-tokens", ambiguity.reasons)

    def test_distinct_title_is_not_ambiguous(self):
        ambiguity = evaluate_ambiguity("breaking bad", "series", None)
        self.assertFalse(ambiguity.is_ambiguous)
        self.assertEqual(ambiguity.significant_token_count, 2)
        self.assertEqual(ambiguity.reasons, ())


class QueryHelperTests(unittest.TestCase):
    def test_sanitize_game_query(self):
        self.assertEqual(sanitize_game_query("Stardew Valley Build 12345 Windows 2016"), "Stardew Valley")
        self.assertEqual(sanitize_game_query("Hades-Linux"), "Hades")
        self.assertEqual(sanitize_game_query("2016"), "2016")

    def test_extract_isbn(self):
        self.assertEqual(extract_isbn("Dune 9780441013593"), "9780441013593")
        self.assertEqual(extract_isbn("Dune 978-0-441-01359-3"), "9780441013593")
        self.assertEqual(extract_isbn("isbn 044101359X"), "044101359X")
        self.assertIsNone(extract_isbn("Dune Messiah"))
        self.assertIsNone(extract_isbn(""))

    def test_parse_audio_query(self):
        self.assertEqual(parse_audio_query("Daft Punk - Discovery"), ("Daft Punk", "Discovery"))
        self.assertEqual(parse_audio_query("AC/DC | Back in Black"), ("AC/DC", "Back in Black"))
        self.assertEqual(parse_audio_query("Air – Moon Safari"), ("Air", "Moon Safari"))
        self.assertEqual(parse_audio_query("Discovery"), (None, "Discovery"))
        self.assertEqual(parse_audio_query("  "), (None, ""))


class CategoryTests(unittest.TestCase):
    def test_parse_category(self):
        self.assertEqual(categories.parse_category("Film"), categories.FILM)
        self.assertEqual(categories.parse_category("JeuWindows"), categories.GAME)
        self.assertEqual(categories.parse_category("jeu_windows"), categories.GAME)
        self.assertEqual(categories.parse_category("podcast"), categories.OTHER)
        self.assertEqual(categories.parse_category(None), categories.OTHER)

    def test_media_types(self):
        self.assertEqual(categories.to_media_type("spectacle"), "movie")
        self.assertEqual(categories.to_media_type("emission"), "series")
        self.assertEqual(categories.to_media_type("comic"), "comic")
        self.assertEqual(categories.to_media_type("other"), "unknown")


if __name__ == "__main__":
    unittest.main()
