import tempfile
import unittest

from posters.fetch_service import FetchResult, infer_igdb_size
from posters.match_cache import MatchCacheEntry, MatchIds, TitleKey, build_fingerprint
from posters.providers.comicvine import ComicVineResult
from posters.providers.googlebooks import GoogleBook
from posters.providers.http import ProviderError
from posters.providers.igdb import IgdbGame
from posters.providers.jikan import JikanAnime
from posters.providers.theaudiodb import AudioDbResult
from posters.providers.tmdb import TmdbDetails, TmdbSearchResult
from posters.providers.tvmaze import TvMazeShow
from posters.strategies import PosterMatchingOrchestrator, fetch_game, fetch_generic, fetch_video

from poster_fakes import (
    FAKE_IMAGE,
    FIXED_NOW,
    FakeFanart,
    FakeSearchProvider,
    FakeTmdb,
    FakeTvMaze,
    build_providers,
    build_service,
    network_calls,
)


def _office_tmdb():
    result = TmdbSearchResult(
        tmdb_id=2316,
        title="The Office",
        original_title="The Office",
        poster_path="/office.jpg",
        media_type="series",
        year=2005,
        original_language="en",
    )
    tmdb = FakeTmdb(tv_results=[result], posters={"/office-fr.jpg": FAKE_IMAGE}, tvdb_ids={2316: 73244})
    tmdb.preferred_paths[2316] = "/office-fr.jpg"
    return tmdb


class FetchServiceTestCase(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.providers = self.build_providers()
        self.service, self.paths = build_service(self.tmpdir.name, self.providers)
        self.releases = self.service.releases

    def tearDown(self):
        self.tmpdir.cleanup()

    def build_providers(self):
        return build_providers()

    def add(self, title, **kwargs):
        kwargs.setdefault("title_clean", title)
        return self.releases.add_release(title=title, **kwargs)


class VideoScenarioTests(FetchServiceTestCase):
    def build_providers(self):
        return build_providers(tmdb=_office_tmdb())

    def test_confident_series_match_writes_w500_and_caches(self):
        release_id = self.add("The Office", year=2005, unified_category="serie")
        result = self.service.fetch_poster(release_id)

        self.assertTrue(result.ok)
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.body["posterFile"], "tmdb-2316-w500.jpg")
        self.assertEqual(result.body["posterUrl"], f"/api/posters/release/{release_id}")
        self.assertTrue(self.service.file_store.exists("tmdb-2316-w500.jpg"))

        release = self.releases.get_for_poster(release_id)
        self.assertEqual(release.poster_provider, "tmdb")
        self.assertEqual(release.poster_size, "w500")
        self.assertEqual(release.tmdb_id, 2316)
        self.assertEqual(release.tvdb_id, 73244)
        self.assertEqual(release.poster_path, "/office-fr.jpg")
        self.assertIsNotNone(release.poster_hash)
        self.assertIsNone(release.poster_last_error)

        fingerprint = build_fingerprint(TitleKey("series", "the office", 2005, None, None))
        entry = self.service.match_cache.try_get(fingerprint)
        self.assertEqual(entry.match_source, "tmdb")
        self.assertEqual(entry.ids, MatchIds(tmdb_id=2316, tvdb_id=73244))
        self.assertEqual(entry.poster_file, "tmdb-2316-w500.jpg")

    def test_same_fingerprint_is_served_from_cache_without_network(self):
        first_id = self.add("The Office", year=2005, unified_category="serie")
        self.assertTrue(self.service.fetch_poster(first_id).ok)
        calls_before = len(network_calls(self.providers))

        second_id = self.add("The Office", year=2005, unified_category="serie")
        result = self.service.fetch_poster(second_id)

        self.assertTrue(result.ok)
        self.assertTrue(result.body["cached"])
        self.assertEqual(len(network_calls(self.providers)), calls_before)
        release = self.releases.get_for_poster(second_id)
        self.assertEqual(release.poster_file, "tmdb-2316-w500.jpg")
        self.assertEqual(release.tmdb_id, 2316)
        self.assertEqual(release.tvdb_id, 73244)

    def test_existing_poster_short_circuits(self):
        release_id = self.add("The Office", year=2005, unified_category="serie")
        self.service.fetch_poster(release_id)
        calls_before = len(network_calls(self.providers))
        result = self.service.fetch_poster(release_id)
        self.assertTrue(result.body["cached"])
        self.assertEqual(len(network_calls(self.providers)), calls_before)

    def test_tmdb_searches_tv_before_movie_for_series(self):
        release_id = self.add("The Office", year=2005, unified_category="serie")
        self.service.fetch_poster(release_id)
        searches = [call for call in self.providers.tmdb.calls if call[0].startswith("search_")]
        self.assertEqual(
            searches,
            [
                ("search_tv_list", "The Office", 2005),
                ("search_tv_list", "The Office", None),
                ("search_movie_list", "The Office", 2005),
                ("search_movie_list", "The Office", None),
            ],
        )


class FailureTests(FetchServiceTestCase):
    def test_missing_release(self):
        result = self.service.fetch_poster(999)
        self.assertEqual(result, FetchResult(False, 404, {"error": "release not found"}, None))

    def test_missing_clean_title(self):
        release_id = self.releases.add_release(title="Raw", title_clean="  -. ")
        result = self.service.fetch_poster(release_id)
        self.assertEqual(result.status_code, 400)
        self.assertEqual(result.error, "title_clean missing (sync first?)")
        self.assertEqual(self.releases.get_for_poster(release_id).poster_last_error, "title_clean missing")

    def test_no_tmdb_match_is_recorded(self):
        release_id = self.add("Midnight Garden Story", year=2015, unified_category="film")
        result = self.service.fetch_poster(release_id)
        self.assertFalse(result.ok)
        self.assertEqual(result.status_code, 404)
        self.assertEqual(result.error, "no tmdb match")
        self.assertEqual(self.releases.get_for_poster(release_id).poster_last_error, "no tmdb match")

    def test_unsupported_generic_category(self):
        orchestrator = PosterMatchingOrchestrator()
        orchestrator.register("podcast", fetch_generic)
        self.service.orchestrator = orchestrator
        release_id = self.add("Some Long Podcast Name", year=2020, unified_category="podcast")
        result = self.service.fetch_poster(release_id)
        self.assertEqual(result.status_code, 400)
        self.assertEqual(result.error, "unsupported generic category")


class BookScenarioTests(FetchServiceTestCase):
    def build_providers(self):
        book = GoogleBook(
            volume_id="abc123",
            title="Dune",
            thumbnail_url=None,
            authors="Frank Herbert",
            description=None,
            published_date="1965",
            year=1965,
        )
        return build_providers(googlebooks=FakeSearchProvider(result=book))

    def test_book_without_thumbnail(self):
        release_id = self.add("Dune 9780441013593", unified_category="book")
        result = self.service.fetch_poster(release_id)
        self.assertFalse(result.ok)
        self.assertEqual(result.status_code, 404)
        self.assertEqual(result.error, "missing google books image")
        self.assertEqual(
            self.providers.googlebooks.calls,
            [("search", "Dune 9780441013593", "9780441013593")],
        )


class GameBranchTests(FetchServiceTestCase):
    cover = "https://images.igdb.com/igdb/image/upload/t_cover_big/co1abc.jpg"

    def build_providers(self):
        game = IgdbGame(
            id=1234,
            name="Stardew Valley",
            cover_url=self.cover,
            year=2016,
            summary="Farming.",
            genres="Simulator",
            rating=88.0,
        )
        igdb = FakeSearchProvider(result=game, images={self.cover: FAKE_IMAGE})
        return build_providers(igdb=igdb)

    def test_game_alias_routes_to_igdb(self):
        release_id = self.add("Stardew Valley Build 12345 Windows", unified_category="JeuWindows")
        result = self.service.fetch_poster(release_id)

        self.assertTrue(result.ok)
        self.assertEqual(result.body["posterFile"], "igdb-1234-cover.jpg")
        self.assertEqual(self.providers.igdb.calls[0], ("search_game", "Stardew Valley", None))
        release = self.releases.get_for_poster(release_id)
        self.assertEqual(release.poster_provider, "igdb")
        self.assertEqual(release.poster_size, "cover_big")
        self.assertEqual(release.ext_overview, "Farming.")
        self.assertEqual(release.ext_release_date, "2016-01-01")

    def test_release_year_is_passed_to_igdb(self):
        release_id = self.add("Stardew Valley", year=2016, unified_category="game")
        self.assertTrue(self.service.fetch_poster(release_id).ok)
        self.assertEqual(self.providers.igdb.calls[0], ("search_game", "Stardew Valley", 2016))

    def test_manual_igdb_poster_updates_details(self):
        release_id = self.add("Stardew Valley", unified_category="game")
        url = self.service.save_manual_igdb_poster(release_id, 1234, self.cover)

        self.assertEqual(url, f"/api/posters/release/{release_id}?v={FIXED_NOW}")
        self.assertIn(("get_game", 1234), self.providers.igdb.calls)
        release = self.releases.get_for_poster(release_id)
        self.assertEqual(release.poster_file, "igdb-1234-manual.jpg")
        self.assertEqual(release.ext_provider, "igdb")
        self.assertEqual(release.ext_overview, "Farming.")

    def test_igdb_size_inference(self):
        self.assertEqual(infer_igdb_size(self.cover), "cover_big")
        self.assertEqual(infer_igdb_size("https://x/t_cover_small/a.jpg"), "cover")
        self.assertIsNone(infer_igdb_size("https://x/a.jpg"))


class OtherBranchTests(FetchServiceTestCase):
    anime_image = "https://cdn.myanimelist.net/images/anime/4/19644.jpg"
    album_image = "https://www.theaudiodb.com/images/media/album/thumb/discovery.png"
    comic_image = "https://comicvine.gamespot.com/a/uploads/saga.jpg"

    def build_providers(self):
        anime = JikanAnime(
            mal_id=1,
            title="Cowboy Bebop",
            image_url=self.anime_image,
            synopsis="Bounty hunters.",
            genres="Action",
            year=1998,
            score=8.75,
        )
        album = AudioDbResult(
            id="2110231",
            title="Discovery",
            artist="Daft Punk",
            image_url=self.album_image,
            year=2001,
            genre="House",
        )
        comic = ComicVineResult(id=49901, name="Saga", image_url=self.comic_image, year=2012, description=None)
        return build_providers(
            jikan=FakeSearchProvider(result=anime, images={self.anime_image: FAKE_IMAGE}),
            theaudiodb=FakeSearchProvider(result=album, images={self.album_image: FAKE_IMAGE}),
            comicvine=FakeSearchProvider(result=comic),
        )

    def test_anime_uses_jikan(self):
        release_id = self.add("Cowboy Bebop", year=1998, unified_category="anime")
        result = self.service.fetch_poster(release_id)

        self.assertTrue(result.ok)
        self.assertEqual(result.body["posterFile"], "jikan-1.jpg")
        self.assertEqual(self.providers.jikan.calls[0], ("search_anime", "Cowboy Bebop", 1998))
        release = self.releases.get_for_poster(release_id)
        self.assertEqual(release.poster_provider, "jikan")
        self.assertEqual(release.ext_overview, "Bounty hunters.")
        self.assertEqual(release.ext_rating, 8.75)

    def test_audio_query_is_split_into_artist_and_title(self):
        release_id = self.add("Daft Punk - Discovery", unified_category="audio")
        result = self.service.fetch_poster(release_id)

        self.assertTrue(result.ok)
        self.assertEqual(result.body["posterFile"], "theaudiodb-2110231.png")
        self.assertEqual(self.providers.theaudiodb.calls[0], ("search", "Daft Punk", "Discovery", None))
        self.assertEqual(self.releases.get_for_poster(release_id).ext_genres, "House")

    def test_comic_download_failure_is_502(self):
        release_id = self.add("Saga", year=2012, unified_category="comic")
        result = self.service.fetch_poster(release_id)

        self.assertEqual(result.status_code, 502)
        self.assertEqual(result.error, "comic vine image download failed")
        self.assertEqual(self.providers.comicvine.calls[0], ("search", "Saga", 2012))
        release = self.releases.get_for_poster(release_id)
        self.assertEqual(release.poster_last_error, "comic vine image download failed")
        self.assertIsNone(release.poster_file)


class FanartFallbackTests(FetchServiceTestCase):
    fanart_url = "https://assets.fanart.tv/fanart/movies/603/movieposter/matrix.png"

    def build_providers(self):
        matrix = TmdbSearchResult(
            tmdb_id=603,
            title="The Matrix",
            original_title="The Matrix",
            poster_path="/matrix.jpg",
            media_type="movie",
            year=1999,
            original_language="en",
        )
        fanart = FakeFanart(movie_urls={603: self.fanart_url}, images={self.fanart_url: FAKE_IMAGE})
        tmdb = FakeTmdb(movie_results=[matrix])
        tmdb.details[603] = TmdbDetails(
            title="The Matrix",
            overview="A hacker learns the truth.",
            tagline=None,
            genres="Action, Science Fiction",
            release_date="1999-03-30",
            runtime_minutes=136,
            rating=8.2,
            votes=25000,
        )
        return build_providers(tmdb=tmdb, fanart=fanart)

    def test_failed_tmdb_download_falls_back_to_fanart(self):
        release_id = self.add("The Matrix", year=1999, unified_category="film")
        result = self.service.fetch_poster(release_id)

        self.assertTrue(result.ok)
        self.assertEqual(result.body["posterFile"], "fanart-603.png")
        self.assertIn(("get_movie_poster_url", 603, "en"), self.providers.fanart.calls)
        release = self.releases.get_for_poster(release_id)
        self.assertEqual(release.poster_provider, "fanart")
        self.assertEqual(release.tmdb_id, 603)
        self.assertEqual(release.ext_provider, "tmdb")
        self.assertEqual(release.ext_overview, "A hacker learns the truth.")
        self.assertEqual(release.ext_runtime_minutes, 136)


class TvMazeBranchTests(FetchServiceTestCase):
    image = "https://static.tvmaze.com/uploads/images/original_untouched/1/1.jpg"

    def build_providers(self):
        show = TvMazeShow(
            id=169,
            name="Breaking Bad",
            premiered_year=2008,
            imdb_id="tt0903747",
            tvdb_id=81189,
            image_medium=None,
            image_original=self.image,
        )
        tvmaze = FakeTvMaze(shows=[show], images={self.image: FAKE_IMAGE})
        tmdb = FakeTmdb(tvdb_ids={1396: 81189})
        return build_providers(tvmaze=tvmaze, tmdb=tmdb)

    def test_series_resolved_through_tvmaze(self):
        release_id = self.add("Breaking Bad", year=2008, unified_category="serie")
        result = self.service.fetch_poster(release_id)

        self.assertTrue(result.ok)
        self.assertEqual(result.body["posterFile"], "tvmaze-169-original.jpg")
        release = self.releases.get_for_poster(release_id)
        self.assertEqual(release.tvdb_id, 81189)
        self.assertEqual(release.tmdb_id, 1396)
        fingerprint = build_fingerprint(TitleKey("series", "breaking bad", 2008))
        entry = self.service.match_cache.try_get(fingerprint)
        self.assertEqual(entry.match_source, "tvmaze")
        self.assertEqual(entry.ids.tvmaze_id, 169)
        self.assertEqual(entry.ids.imdb_id, "tt0903747")
        self.assertFalse(any(call[0].startswith("search_") for call in self.providers.tmdb.calls))

    def test_missing_cached_file_is_recovered_from_tvmaze(self):
        release_id = self.add("Breaking Bad", year=2008, unified_category="serie")
        self.service.fetch_poster(release_id)
        self.service.file_store.clear()
        self.providers.tvmaze.calls.clear()

        other_id = self.add("Breaking Bad", year=2008, unified_category="serie")
        result = self.service.fetch_poster(other_id)

        self.assertTrue(result.ok)
        self.assertEqual(self.providers.tvmaze.calls[0], ("get_show", 169))
        self.assertNotIn(("search_shows", "Breaking Bad"), self.providers.tvmaze.calls)


class ReuseTests(FetchServiceTestCase):
    def test_same_title_release_is_reused(self):
        first_id = self.add("Inception", year=2010, unified_category="film", media_type="movie")
        self.service.file_store.write("tmdb-27205-w500.jpg", FAKE_IMAGE)
        self.releases.save_poster(first_id, 27205, "/inception.jpg", "tmdb-27205-w500.jpg")
        self.releases.update_external_details(first_id, "tmdb", "27205", overview="Dreams within dreams.")

        second_id = self.add("Inception", year=2010, unified_category="film", media_type="movie")
        result = self.service.fetch_poster(second_id)

        self.assertTrue(result.ok)
        self.assertTrue(result.body["reused"])
        self.assertEqual(result.body["fromReleaseId"], first_id)
        self.assertEqual(network_calls(self.providers), [])
        release = self.releases.get_for_poster(second_id)
        self.assertEqual(release.poster_file, "tmdb-27205-w500.jpg")
        self.assertEqual(release.tmdb_id, 27205)
        self.assertEqual(release.ext_overview, "Dreams within dreams.")
        entry = self.service.match_cache.try_get(build_fingerprint(TitleKey("movie", "inception", 2010)))
        self.assertEqual(entry.match_source, "reuse")
        self.assertAlmostEqual(entry.confidence, 0.85)


class RoutingTests(FetchServiceTestCase):
    def test_registry_resolution(self):
        orchestrator = PosterMatchingOrchestrator()
        self.assertIs(orchestrator.resolve("Game"), fetch_game)
        self.assertIs(orchestrator.resolve("jeuwindows"), fetch_game)
        self.assertIs(orchestrator.resolve("comic"), fetch_generic)
        self.assertIs(orchestrator.resolve("film"), fetch_video)
        self.assertIs(orchestrator.resolve(None), fetch_video)
        with self.assertRaises(ValueError):
            orchestrator.register("podcast", "not callable")
        with self.assertRaises(ValueError):
            orchestrator.register(" ", fetch_video)

    def test_registered_strategy_receives_context(self):
        seen = []

        def fetch_podcast(core, context, cancel):
            seen.append(context)
            return FetchResult(True, 200, {"ok": True}, context.source_id)

        orchestrator = PosterMatchingOrchestrator()
        orchestrator.register("Podcast", fetch_podcast)
        self.service.orchestrator = orchestrator
        release_id = self.add("Some Long Podcast Name", year=2020, unified_category="podcast", source_id=7)
        result = self.service.fetch_poster(release_id)

        self.assertTrue(result.ok)
        self.assertEqual(result.source_id, 7)
        self.assertEqual(seen[0].category_tag, "podcast")
        self.assertEqual(seen[0].media_type, "unknown")


class ManualAndCacheTests(FetchServiceTestCase):
    def build_providers(self):
        return build_providers(tmdb=FakeTmdb(posters={"/matrix.jpg": FAKE_IMAGE}))

    def test_manual_tmdb_poster(self):
        release_id = self.add("The Matrix", year=1999, unified_category="film", media_type="movie")
        url = self.service.save_manual_tmdb_poster(release_id, 603, "/matrix.jpg")
        self.assertEqual(url, f"/api/posters/release/{release_id}?v={FIXED_NOW}")
        release = self.releases.get_for_poster(release_id)
        self.assertEqual(release.poster_file, "tmdb-603-manual.jpg")
        self.assertEqual(release.poster_provider, "tmdb")
        self.assertEqual(release.tmdb_id, 603)
        self.assertIsNone(self.service.save_manual_tmdb_poster(release_id, 0, "/matrix.jpg"))
        self.assertIsNone(self.service.save_manual_tmdb_poster(release_id, 603, "/missing.jpg"))

    def test_clear_poster_cache(self):
        release_id = self.add("The Matrix", year=1999, unified_category="film", media_type="movie")
        self.service.save_manual_tmdb_poster(release_id, 603, "/matrix.jpg")
        self.assertEqual(self.service.local_poster_count(), 1)
        self.assertEqual(self.service.clear_poster_cache(), 1)
        self.assertEqual(self.service.local_poster_count(), 0)
        self.assertIsNone(self.releases.get_for_poster(release_id).poster_file)


class TmdbCandidatePoolTests(FetchServiceTestCase):
    def build_providers(self):
        unrelated = [
            TmdbSearchResult(
                tmdb_id=100 + index,
                title=f"Unrelated Show {index}",
                original_title=None,
                poster_path=None,
                media_type="series",
                year=2000 + index,
                original_language="en",
            )
            for index in range(10)
        ]
        movie = TmdbSearchResult(
            tmdb_id=777,
            title="Blue Planet Tales",
            original_title=None,
            poster_path="/blue.jpg",
            media_type="movie",
            year=2019,
            original_language="en",
        )
        tmdb = FakeTmdb(tv_results=unrelated, movie_results=[movie], posters={"/blue.jpg": FAKE_IMAGE})
        return build_providers(tmdb=tmdb)

    def test_movie_match_survives_a_full_page_of_tv_results(self):
        release_id = self.add("Blue Planet Tales", year=2019, unified_category="serie")
        result = self.service.fetch_poster(release_id)

        self.assertTrue(result.ok)
        self.assertEqual(result.body["posterFile"], "tmdb-777-w500.jpg")
        self.assertEqual(self.releases.get_for_poster(release_id).tmdb_id, 777)


class AccentedTitleReuseTests(FetchServiceTestCase):
    def test_accented_title_is_reused(self):
        first_id = self.add("Amélie", year=2001, unified_category="film", media_type="movie")
        self.service.file_store.write("tmdb-194-w500.jpg", FAKE_IMAGE)
        self.releases.save_poster(first_id, 194, "/amelie.jpg", "tmdb-194-w500.jpg")

        second_id = self.add("Amélie", year=2001, unified_category="film", media_type="movie")
        result = self.service.fetch_poster(second_id)

        self.assertTrue(result.ok)
        self.assertTrue(result.body["reused"])
        self.assertEqual(result.body["fromReleaseId"], first_id)
        self.assertEqual(network_calls(self.providers), [])
        self.assertEqual(self.releases.get_for_poster(second_id).poster_file, "tmdb-194-w500.jpg")


class FailingTmdb(FakeTmdb):
    def get_tv_tmdb_id_by_tvdb_id(self, tvdb_id, cancel=None):
        self.calls.append(("get_tv_tmdb_id_by_tvdb_id", tvdb_id))
        raise ProviderError("tmdb", 500)


class TmdbOutageTests(FetchServiceTestCase):
    image = "https://static.tvmaze.com/uploads/images/original_untouched/1/1.jpg"

    def build_providers(self):
        show = TvMazeShow(
            id=169,
            name="Breaking Bad",
            premiered_year=2008,
            imdb_id=None,
            tvdb_id=81189,
            image_medium=None,
            image_original=self.image,
        )
        tvmaze = FakeTvMaze(shows=[show], images={self.image: FAKE_IMAGE})
        return build_providers(tvmaze=tvmaze, tmdb=FailingTmdb())

    def test_cached_poster_is_reused_when_tmdb_fails(self):
        self.service.file_store.write("tvmaze-1-original.jpg", FAKE_IMAGE)
        self.service.match_cache.upsert(
            MatchCacheEntry(
                fingerprint=build_fingerprint(TitleKey("series", "lost in space", 2018)),
                media_type="series",
                normalized_title="lost in space",
                year=2018,
                season=None,
                episode=None,
                ids=MatchIds(tvdb_id=999),
                confidence=0.9,
                match_source="tvmaze",
                poster_file="tvmaze-1-original.jpg",
                poster_provider="tvmaze",
                poster_provider_id="1",
            )
        )
        release_id = self.add("Lost In Space", year=2018, unified_category="serie")
        result = self.service.fetch_poster(release_id)

        self.assertTrue(result.ok)
        self.assertTrue(result.body["cached"])
        self.assertIn(("get_tv_tmdb_id_by_tvdb_id", 999), self.providers.tmdb.calls)
        release = self.releases.get_for_poster(release_id)
        self.assertEqual(release.poster_file, "tvmaze-1-original.jpg")
        self.assertEqual(release.tvdb_id, 999)
        self.assertIsNone(release.tmdb_id)

    def test_tvmaze_poster_is_kept_when_tmdb_fails(self):
        release_id = self.add("Breaking Bad", year=2008, unified_category="serie")
        result = self.service.fetch_poster(release_id)

        self.assertTrue(result.ok)
        self.assertEqual(result.body["posterFile"], "tvmaze-169-original.jpg")
        release = self.releases.get_for_poster(release_id)
        self.assertEqual(release.tvdb_id, 81189)
        self.assertIsNone(release.tmdb_id)


if __name__ == "__main__":
    unittest.main()
